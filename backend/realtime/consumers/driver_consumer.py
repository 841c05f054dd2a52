"""Driver WebSocket consumer for the location stream, status and ride offers."""

import logging
from typing import Dict, Any

from channels.db import database_sync_to_async
from django.utils.dateparse import parse_datetime

from .base import BaseConsumer
from drivers import services as driver_services
from services.matching import MatchingError, UnknownDriverError
from services.ride_management import RideManagementError, respond_to_offer

logger = logging.getLogger(__name__)


class DriverConsumer(BaseConsumer):
    """
    WebSocket consumer for drivers.

    Handles:
        - Driver location updates (fed into the live registry)
        - Status changes (online/offline)
        - Ride offers pushed by the engine, and the driver's answers
    """

    allowed_role = "driver"
    welcome_message = "Driver connected successfully"

    async def on_connect(self):
        # Offers and offer_closed events are addressed to driver_<id>
        await self._join_group(f"driver_{self.user_id}")
        await super().on_connect()

    async def on_disconnect(self, close_code):
        """A dropped socket means the driver's position is no longer live."""
        try:
            await self._set_location_sharing(False)
            logger.info("Driver %s disconnected; location sharing off", self.user_id)
        except UnknownDriverError:
            logger.debug("Driver %s not in registry on disconnect", self.user_id)

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle driver-specific messages."""

        if msg_type == "driver_location_update":
            await self._handle_location_update(data)
        elif msg_type == "driver_status_update":
            await self._handle_status_update(data)
        elif msg_type == "offer_response":
            await self._handle_offer_response(data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_location_update(self, data: Dict[str, Any]):
        """
        Handle driver location update.

        The registry keeps the newest report; the database copy is written
        through (and throttled) by the engine's store.
        """
        lat = data.get("latitude")
        lon = data.get("longitude")

        if lat is None or lon is None:
            await self.send_error("driver_location_update requires latitude and longitude")
            return

        timestamp = None
        if data.get("timestamp"):
            timestamp = parse_datetime(str(data["timestamp"]))
            if timestamp is None:
                await self.send_error("timestamp must be an ISO 8601 datetime")
                return

        try:
            applied = await self._ingest_location(lat, lon, timestamp)
        except MatchingError as exc:
            await self.send_error(str(exc), code=exc.code)
            return

        logger.debug("Driver %s location update: lat=%s, lon=%s, applied=%s", self.user_id, lat, lon, applied)
        await self.send_success("location_updated", applied=applied)

    async def _handle_status_update(self, data: Dict[str, Any]):
        """Handle driver status change (online/offline)."""
        status = data.get("status")

        if status not in ["online", "offline"]:
            await self.send_error("Invalid status. Must be: online or offline")
            return

        try:
            driver = await self._update_status(status)
        except MatchingError as exc:
            await self.send_error(str(exc), code=exc.code)
            return

        await self.send_success("status_updated", status=driver.status.value)

    async def _handle_offer_response(self, data: Dict[str, Any]):
        """Accept or reject the ride currently offered to this driver."""
        ride_id = data.get("ride_id")
        accept = data.get("accept")

        if ride_id is None or not isinstance(accept, bool):
            await self.send_error("offer_response requires ride_id and a boolean accept")
            return

        try:
            summary = await self._respond(ride_id, accept)
        except (MatchingError, RideManagementError) as exc:
            await self.send_error(str(exc), code=exc.code)
            return

        await self.send_success("offer_response_ack", ride_id=ride_id, accept=accept, matching=summary)

    # ---------------------- Engine Helpers ----------------------

    @database_sync_to_async
    def _ingest_location(self, lat, lon, timestamp) -> bool:
        # A live stream means sharing is on again, whatever a past disconnect set
        return driver_services.ingest_location(
            self.user_id, lat, lon, timestamp=timestamp, is_location_active=True
        )

    @database_sync_to_async
    def _update_status(self, status: str):
        return driver_services.update_driver_status(self.user_id, status)

    @database_sync_to_async
    def _set_location_sharing(self, active: bool):
        return driver_services.set_location_sharing(self.user_id, active)

    @database_sync_to_async
    def _respond(self, ride_id, accept: bool) -> Dict[str, Any]:
        return respond_to_offer(self.user, ride_id, accept).extra["matching"]
