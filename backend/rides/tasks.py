"""
Celery tasks for write-through persistence of matching engine state.

The engine enqueues these from rides.store.CeleryDispatchStore. Tasks may run
out of order, so each one refuses to move a row backwards.
"""

import logging

from celery import shared_task
from django.db.models import Q
from django.utils.dateparse import parse_datetime

from services.matching.models import RIDE_TRANSITIONS, RideStatus

logger = logging.getLogger(__name__)


def _when(value):
    return parse_datetime(value) if value else None


def _can_move(current: str, new: str) -> bool:
    if current == new:
        return True
    try:
        current_status = RideStatus(current)
    except ValueError:
        # Owner-only statuses such as "completed" are final
        return False
    return RideStatus(new) in RIDE_TRANSITIONS[current_status]


@shared_task
def persist_driver_state(
    driver_id,
    status,
    verification_status,
    is_location_active,
    latitude=None,
    longitude=None,
    last_location_update=None,
    location_only=False,
    state_changed_at=None,
):
    """
    Mirror a registry driver snapshot onto its DriverProfile row.

    Status, verification and the sharing flag are written only when
    `state_changed_at` is at least the stamp already on the row, so a task
    carrying an older snapshot leaves the newer one in place.
    """
    from drivers.models import DriverProfile

    profiles = DriverProfile.objects.filter(user_id=driver_id)
    if not profiles.exists():
        logger.warning("No driver profile for driver %s; state not persisted", driver_id)
        return False

    if not location_only:
        fields = {
            "status": status,
            "verification_status": verification_status,
            "is_location_active": is_location_active,
        }
        stamp = _when(state_changed_at)
        if stamp is None:
            profiles.update(**fields)
        elif not profiles.filter(
            Q(state_changed_at__isnull=True) | Q(state_changed_at__lte=stamp)
        ).update(state_changed_at=stamp, **fields):
            logger.info("Driver %s already has state newer than %s; skipping", driver_id, state_changed_at)

    timestamp = _when(last_location_update)
    if timestamp is not None and latitude is not None and longitude is not None:
        # Never let a late task overwrite a newer position
        profiles.filter(
            Q(last_location_update__isnull=True) | Q(last_location_update__lte=timestamp)
        ).update(
            current_latitude=round(latitude, 6),
            current_longitude=round(longitude, 6),
            last_location_update=timestamp,
        )
    return True


@shared_task
def persist_offer(ride_id, driver_id, order, state, sent_at=None, expires_at=None, responded_at=None):
    """Record an offer in the RideOffer ledger (one row per ride and driver)."""
    from rides.models import RideOffer, RideRequest

    if not RideRequest.objects.filter(pk=ride_id).exists():
        logger.warning("Offer for unknown ride %s (driver %s) not persisted", ride_id, driver_id)
        return False

    offer, created = RideOffer.objects.get_or_create(
        ride_id=ride_id,
        driver_id=driver_id,
        defaults={
            "order": order,
            "status": state,
            "sent_at": _when(sent_at),
            "expires_at": _when(expires_at),
            "responded_at": _when(responded_at),
        },
    )
    if created:
        return True

    if offer.status != "pending" and state == "pending":
        logger.debug("Ignoring stale pending write for offer %s", offer.id)
        return False

    offer.order = order
    offer.status = state
    offer.sent_at = _when(sent_at) or offer.sent_at
    offer.expires_at = _when(expires_at) or offer.expires_at
    offer.responded_at = _when(responded_at)
    offer.save(update_fields=["order", "status", "sent_at", "expires_at", "responded_at"])
    return True


@shared_task
def persist_ride_outcome(
    ride_id,
    status,
    driver_id=None,
    failure_reason=None,
    cancellation_reason=None,
    finished_at=None,
):
    """Write the engine's view of a ride's status onto its RideRequest row."""
    from rides.models import RideRequest

    ride = RideRequest.objects.filter(pk=ride_id).first()
    if ride is None:
        logger.warning("Outcome for unknown ride %s not persisted", ride_id)
        return False

    if not _can_move(ride.status, status):
        logger.info("Ride %s is %s; ignoring late update to %s", ride_id, ride.status, status)
        return False

    ride.status = status
    update_fields = ["status"]
    finished = _when(finished_at)

    if status == RideStatus.MATCHED.value:
        ride.driver_id = driver_id
        ride.matched_at = finished
        update_fields += ["driver", "matched_at"]
    elif status == RideStatus.CANCELLED.value:
        ride.cancelled_at = finished
        update_fields.append("cancelled_at")
        if cancellation_reason:
            ride.cancellation_reason = cancellation_reason
            update_fields.append("cancellation_reason")

    if failure_reason:
        ride.failure_reason = failure_reason
        update_fields.append("failure_reason")
    if finished is not None:
        ride.finished_at = finished
        update_fields.append("finished_at")

    ride.save(update_fields=update_fields)
    logger.debug("Ride %s persisted as %s", ride_id, status)
    return True
