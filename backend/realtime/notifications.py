"""
Notification helpers for sending WebSocket messages to connected clients.

This module provides:
- ChannelsDispatchNotifier, the matching engine's DispatchNotifier: offers
  go to driver_<id>, outcomes to user_<rider_id> (and the matched driver)
- notify_driver_event / notify_passenger_event for ride owner events
  (completion, cancellation after assignment)
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from services.matching import DeclineReason, DispatchNotifier, RideStatus

logger = logging.getLogger(__name__)

_OUTCOME_EVENTS = {
    RideStatus.MATCHED: ("ride_matched", "A driver accepted your ride and is on the way."),
    RideStatus.FAILED: ("ride_failed", "No drivers available nearby. Please try again later."),
    RideStatus.EXPIRED: ("ride_expired", "No driver accepted your ride in time. Please try again."),
    RideStatus.CANCELLED: ("ride_cancelled", "Ride request cancelled."),
}


def _send(group: str, payload: Dict[str, Any]) -> bool:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer available; dropping %s for %s", payload.get("type"), group)
        return False

    logger.debug("WS -> %s: %s", group, payload)
    async_to_sync(channel_layer.group_send)(group, payload)
    return True


def ride_payload(ride) -> Dict[str, Any]:
    """Serializable view of a services.matching.RideRequest."""
    return {
        "ride_id": ride.id,
        "rider_id": ride.rider_id,
        "pickup_latitude": ride.pickup.latitude,
        "pickup_longitude": ride.pickup.longitude,
        "dropoff_latitude": ride.dropoff.latitude if ride.dropoff else None,
        "dropoff_longitude": ride.dropoff.longitude if ride.dropoff else None,
        "requested_at": ride.requested_at.isoformat(),
        "status": ride.status.value,
    }


class ChannelsDispatchNotifier(DispatchNotifier):
    """Pushes engine events onto the channel layer."""

    def offer_sent(self, session, offer):
        _send(f"driver_{offer.driver_id}", {
            "type": "ride_offer",
            "ride_id": offer.ride_id,
            "offer_id": offer.id,
            "expires_at": offer.expires_at.isoformat(),
            "ride_data": ride_payload(session.ride),
        })

    def offer_closed(self, session, offer):
        _send(f"driver_{offer.driver_id}", {
            "type": "offer_closed",
            "ride_id": offer.ride_id,
            "offer_id": offer.id,
            "state": offer.state.value,
            "message": (
                "Your ride offer has timed out."
                if session.declined.get(offer.driver_id) == DeclineReason.EXPIRED
                else "This ride is no longer available."
            ),
        })

    def session_finished(self, session):
        event_type, message = _OUTCOME_EVENTS[session.status]
        payload = {
            "type": event_type,
            "ride_id": session.ride.id,
            "status": session.status.value,
            "driver_id": session.matched_driver_id,
            "message": message,
        }
        if session.failure is not None:
            payload["reason"] = session.failure.code

        if session.ride.rider_id is not None:
            _send(f"user_{session.ride.rider_id}", payload)
        if session.status == RideStatus.MATCHED:
            _send(f"driver_{session.matched_driver_id}", {**payload, "ride_data": ride_payload(session.ride)})


# ---------------------- Ride Owner Notifications ----------------------

def notify_driver_event(
    event_type: str,
    ride,
    driver_id: int | None,
    message: str = "",
    extra: Dict[str, Any] = None,
) -> bool:
    """
    Send an event to a specific driver using their personal group: driver_<driver_id>

    Args:
        event_type: Handler name in consumer (ride_cancelled, ride_completed)
        ride: rides.models.RideRequest instance
        driver_id: Target driver's user ID
        message: Optional message to include
        extra: Additional payload data

    Returns:
        True if sent successfully, False otherwise
    """
    if not driver_id:
        return False

    payload = {
        "type": event_type,
        "ride_id": ride.id,
        "driver_id": driver_id,
        "status": ride.status,
        **(extra or {}),
    }
    if message:
        payload["message"] = message

    return _send(f"driver_{driver_id}", payload)


def notify_passenger_event(
    event_type: str,
    ride,
    message: str = "",
    extra: Dict[str, Any] = None,
) -> bool:
    """
    Send ride-related event to the passenger through: user_<passenger_id>

    Returns:
        True if sent successfully, False otherwise
    """
    passenger_id = ride.passenger_id
    if not passenger_id:
        return False

    from rides.serializers import RideRequestSerializer

    payload = {
        "type": event_type,
        "ride_id": ride.id,
        "status": ride.status,
        "ride_data": RideRequestSerializer(ride).data,
        **(extra or {}),
    }
    if message:
        payload["message"] = message

    return _send(f"user_{passenger_id}", payload)
