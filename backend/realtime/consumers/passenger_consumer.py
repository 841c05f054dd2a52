"""Passenger WebSocket consumer for ride matching notifications."""

import logging
from typing import Dict, Any

from channels.db import database_sync_to_async

from .base import BaseConsumer
from services.ride_management import get_current_passenger_ride, matching_state

logger = logging.getLogger(__name__)


class PassengerConsumer(BaseConsumer):
    """
    WebSocket consumer for passengers.

    Outcome events (ride_matched, ride_failed, ride_expired, ride_cancelled,
    ride_completed) arrive on the personal user_<id> group joined by
    BaseConsumer. Clients may also ask for the current ride state.
    """

    allowed_role = "user"
    welcome_message = "Passenger connected successfully"

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle passenger-specific messages."""

        if msg_type == "get_ride_status":
            await self.send_json(await self._ride_status())
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    @database_sync_to_async
    def _ride_status(self) -> Dict[str, Any]:
        ride = get_current_passenger_ride(self.user)
        if ride is None:
            return {"type": "ride_status", "ride_id": None, "status": None}
        return {
            "type": "ride_status",
            "ride_id": ride.id,
            "status": ride.status,
            "driver_id": ride.driver_id,
            "matching": matching_state(ride.id),
        }
