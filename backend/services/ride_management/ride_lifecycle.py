"""
Core ride lifecycle operations.

Glue between the RideRequest rows the API exposes and the matching engine
that decides who drives. Views and WebSocket consumers call these functions;
the engine writes its outcomes back to the rows through Celery tasks.
"""

import logging
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass

from django.db.models import F
from django.utils import timezone

from accounts.models import User
from drivers.models import DriverProfile
from rides.engine import get_engine
from rides.models import RideRequest
from services.matching import (
    Location,
    MatchingCapacityExceededError,
    Offer,
    RideStatus,
    SearchConstraints,
    SessionNotFoundError,
)
from services.matching import RideRequest as MatchRequest
from .exceptions import (
    ActiveRideExistsError,
    DriverProfileNotFoundError,
    RideNotAvailableError,
    RideNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class RideResult:
    """Result object for ride operations."""
    success: bool
    ride: Optional[RideRequest] = None
    message: str = ""
    error_code: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


def to_match_request(ride: RideRequest) -> MatchRequest:
    """Engine view of a pending RideRequest row."""
    dropoff = None
    if ride.dropoff_latitude is not None and ride.dropoff_longitude is not None:
        dropoff = Location.of(ride.dropoff_latitude, ride.dropoff_longitude)

    return MatchRequest(
        id=ride.id,
        rider_id=ride.passenger_id,
        pickup=Location.of(ride.pickup_latitude, ride.pickup_longitude),
        dropoff=dropoff,
        requested_at=ride.requested_at,
        constraints=SearchConstraints.build(
            radius_meters=ride.search_radius,
            required_capabilities=ride.required_capabilities or (),
        ),
    )


def matching_state(ride_id) -> Optional[Dict[str, Any]]:
    """Live session summary for a ride, or None once the engine no longer tracks it."""
    try:
        return get_engine().service.get_session(ride_id).summary()
    except SessionNotFoundError:
        return None


# ===================== Passenger Operations =====================

def check_active_ride(user) -> Optional[RideRequest]:
    """Check if user has an active ride."""
    return RideRequest.objects.filter(
        passenger=user,
        status__in=RideRequest.ACTIVE_STATUSES,
    ).first()


def create_ride_request(
    passenger,
    pickup_latitude: float,
    pickup_longitude: float,
    pickup_address: str = "",
    dropoff_latitude: Optional[float] = None,
    dropoff_longitude: Optional[float] = None,
    dropoff_address: str = "",
    number_of_passengers: int = 1,
    search_radius: int = 5000,
    required_capabilities: Optional[List[str]] = None,
) -> RideResult:
    """
    Create a ride request and start matching it to the best driver.

    Matching continues in the background; the returned result carries the
    session state right after the first offer went out.

    Raises:
        ActiveRideExistsError: passenger already has an active ride
        MatchingCapacityExceededError: too many rides are matching right now
    """
    existing = check_active_ride(passenger)
    if existing:
        raise ActiveRideExistsError("You already have an active ride request")

    ride = RideRequest.objects.create(
        passenger=passenger,
        pickup_latitude=round(pickup_latitude, 6),
        pickup_longitude=round(pickup_longitude, 6),
        pickup_address=pickup_address,
        dropoff_latitude=round(dropoff_latitude, 6) if dropoff_latitude is not None else None,
        dropoff_longitude=round(dropoff_longitude, 6) if dropoff_longitude is not None else None,
        dropoff_address=dropoff_address,
        number_of_passengers=number_of_passengers,
        search_radius=search_radius,
        required_capabilities=list(required_capabilities or []),
        status='pending',
    )

    try:
        session = get_engine().service.request_match(to_match_request(ride))
    except MatchingCapacityExceededError as exc:
        ride.status = 'failed'
        ride.failure_reason = exc.code
        ride.finished_at = timezone.now()
        ride.save(update_fields=['status', 'failure_reason', 'finished_at'])
        raise

    ride.refresh_from_db()
    if session.pending_offer is not None:
        message = "Notifying the nearest driver..."
    elif session.status == RideStatus.MATCHED:
        message = "Driver found."
    else:
        message = "No available drivers found nearby."

    return RideResult(
        success=True,
        ride=ride,
        message=message,
        extra={"matching": session.summary()},
    )


def get_current_passenger_ride(passenger) -> Optional[RideRequest]:
    """Get passenger's current active ride (or the latest one that just ended)."""
    return RideRequest.objects.filter(
        passenger=passenger,
    ).select_related('driver__driver_profile').first()


def cancel_ride_by_passenger(
    passenger,
    ride_id: int,
    reason: str = "No reason provided"
) -> RideResult:
    """
    Cancel a ride by passenger.

    While matching is still running this cancels the session (revoking the
    open offer); after a driver was matched it hands the driver back instead.
    """
    try:
        ride = RideRequest.objects.get(id=ride_id, passenger=passenger)
    except RideRequest.DoesNotExist:
        raise RideNotFoundError("Ride not found")

    if not ride.is_active:
        raise RideNotAvailableError(f"Cannot cancel - ride is already {ride.status}")

    service = get_engine().service
    assigned_driver_id = ride.driver_id
    try:
        session = service.get_session(ride.id)
    except SessionNotFoundError:
        session = None
        logger.warning("Ride %s has no matching session; cancelling the row only", ride.id)

    if session is not None and not service.cancel(ride.id, reason):
        # Already finished: only a matched ride can still be cancelled
        if session.status != RideStatus.MATCHED:
            raise RideNotAvailableError(f"Cannot cancel - ride is already {session.status.value}")
        assigned_driver_id = session.matched_driver_id
        service.complete(ride.id)

    ride.status = 'cancelled'
    ride.cancelled_at = timezone.now()
    ride.finished_at = ride.finished_at or ride.cancelled_at
    ride.cancellation_reason = reason
    ride.save(update_fields=['status', 'cancelled_at', 'finished_at', 'cancellation_reason'])

    if assigned_driver_id:
        from realtime.notifications import notify_driver_event
        try:
            notify_driver_event('ride_cancelled', ride, assigned_driver_id, 'Passenger cancelled this ride.')
        except Exception:
            logger.exception("Failed to notify driver %s of cancellation", assigned_driver_id)

    return RideResult(
        success=True,
        ride=ride,
        message="Ride cancelled successfully",
        extra={"was_assigned": bool(assigned_driver_id)},
    )


# ===================== Driver Operations =====================

def _require_profile(driver) -> DriverProfile:
    try:
        return driver.driver_profile
    except DriverProfile.DoesNotExist:
        raise DriverProfileNotFoundError("Driver profile not found")


def respond_to_offer(driver, ride_id: int, accept: bool) -> RideResult:
    """
    Answer the offer this driver currently holds for `ride_id`.

    Raises:
        RideNotFoundError: no such ride
        SessionNotFoundError: the engine is not matching this ride
        StaleOfferError: the offer is gone (answered, expired or revoked)
    """
    _require_profile(driver)
    if not RideRequest.objects.filter(pk=ride_id).exists():
        raise RideNotFoundError("Ride not found")

    session = get_engine().service.respond(ride_id, driver.id, accept)
    ride = RideRequest.objects.select_related('passenger').get(pk=ride_id)

    if accept:
        logger.info("Driver %s accepted ride %s", driver.id, ride_id)
        message = "Ride Accepted Successfully! Navigate to pickup location."
    else:
        message = "Offer declined."
    return RideResult(
        success=True,
        ride=ride,
        message=message,
        extra={"matching": session.summary()},
    )


def accept_ride(driver, ride_id: int) -> RideResult:
    return respond_to_offer(driver, ride_id, True)


def reject_ride_offer(driver, ride_id: int) -> RideResult:
    return respond_to_offer(driver, ride_id, False)


def complete_ride(driver, ride_id: int) -> RideResult:
    """
    Complete a ride - called by driver when passenger reaches destination.
    Hands the driver back to the engine as online.
    """
    try:
        ride = RideRequest.objects.select_related('passenger').get(id=ride_id)
    except RideRequest.DoesNotExist:
        raise RideNotFoundError("Ride not found")

    service = get_engine().service
    try:
        session = service.get_session(ride_id)
    except SessionNotFoundError:
        session = None

    if session is not None:
        matched = session.status == RideStatus.MATCHED and session.matched_driver_id == driver.id
    else:
        matched = ride.status == 'matched' and ride.driver_id == driver.id
    if not matched:
        raise RideNotFoundError("Ride not found or not matched to you")
    if ride.status == 'completed':
        raise RideNotAvailableError("Ride is already completed")

    if session is not None:
        service.complete(ride_id)

    ride.status = 'completed'
    ride.driver = driver
    ride.completed_at = timezone.now()
    ride.save(update_fields=['status', 'driver', 'completed_at'])

    # Update ride counts
    User.objects.filter(pk__in=[ride.passenger_id, driver.id]).update(
        completed_rides=F('completed_rides') + 1
    )

    from realtime.notifications import notify_passenger_event
    try:
        notify_passenger_event(
            'ride_completed',
            ride,
            'Your ride has been completed. Thank you for riding with us!'
        )
    except Exception:
        logger.exception("Failed to notify passenger of ride %s completion", ride.id)

    return RideResult(
        success=True,
        ride=ride,
        message="Ride completed successfully"
    )


def get_pending_offers(driver) -> List[Tuple[RideRequest, Offer]]:
    """(ride row, live offer) pairs for every offer this driver can still answer."""
    offers = get_engine().service.pending_offers(driver.id)
    rides = RideRequest.objects.select_related('passenger').in_bulk([offer.ride_id for offer in offers])
    return [(rides[offer.ride_id], offer) for offer in offers if offer.ride_id in rides]
