"""
Shared WebSocket plumbing for the driver and passenger endpoints.

Every socket joins its owner's personal `user_<id>` group; engine events
sent to that group (or to `driver_<id>`) arrive through the relay handlers
at the bottom of this module.
"""

import logging
from typing import Any, Dict, Optional, Set

from channels.generic.websocket import AsyncJsonWebsocketConsumer

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Subclasses set `allowed_role` and may override:
        - on_connect(): extra groups and the welcome message
        - on_disconnect(close_code): cleanup after groups are left
        - handle_message(msg_type, data): client -> server messages
    """

    allowed_role: Optional[str] = None
    welcome_message = ""

    async def connect(self):
        self.user = self.scope["user"]
        if self.user.is_anonymous:
            await self.close()
            return

        self.user_id = getattr(self.user, "id", None)
        self.role = getattr(self.user, "role", None)
        self.joined_groups: Set[str] = set()

        await self.accept()
        if self.allowed_role and self.role != self.allowed_role:
            # Accept first so the client can read why it is being dropped
            await self.send_error(f"This endpoint is for {self.allowed_role} accounts only", code="forbidden")
            await self.close()
            return

        await self._join_group(f"user_{self.user_id}")
        await self.on_connect()

    async def on_connect(self):
        await self.send_success(
            "connection_established",
            user_id=self.user_id,
            role=self.role,
            message=self.welcome_message,
        )

    async def disconnect(self, close_code):
        if not getattr(self, "joined_groups", None):
            return
        try:
            for group in list(self.joined_groups):
                await self._leave_group(group)
            await self.on_disconnect(close_code)
        except Exception:
            logger.exception("Disconnect cleanup failed for user %s", self.user_id)

    async def on_disconnect(self, close_code):
        pass

    async def receive_json(self, data: Dict[str, Any]):
        msg_type = data.get("type")
        if not msg_type:
            await self.send_error("Message type is required")
            return

        try:
            await self.handle_message(msg_type, data)
        except Exception:
            logger.exception("Error handling %s from user %s", msg_type, self.user_id)
            await self.send_error(f"Error processing {msg_type}")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Groups ----------------------

    async def _join_group(self, group_name: str):
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.joined_groups.add(group_name)

    async def _leave_group(self, group_name: str):
        await self.channel_layer.group_discard(group_name, self.channel_name)
        self.joined_groups.discard(group_name)

    # ---------------------- Replies ----------------------

    async def send_error(self, message: str, code: str = None):
        payload = {"type": "error", "message": message}
        if code:
            payload["error"] = code
        await self.send_json(payload)

    async def send_success(self, event_type: str, **kwargs):
        await self.send_json({"type": event_type, **kwargs})

    # ---------------------- Engine and ride owner events ----------------------

    async def _relay(self, event, *keys, defaults=None):
        """Forward a group_send event, renaming `ride_data` to `ride`."""
        defaults = defaults or {}
        payload = {"type": event["type"]}
        for key in keys:
            payload[key] = event.get(key, defaults.get(key))
        if "ride_data" in event or "ride" in defaults:
            payload["ride"] = event.get("ride_data", defaults.get("ride"))
        await self.send_json(payload)

    async def ride_offer(self, event):
        await self._relay(event, "ride_id", "offer_id", "expires_at")

    async def offer_closed(self, event):
        await self._relay(event, "ride_id", "offer_id", "state", "message", defaults={"message": ""})

    async def ride_matched(self, event):
        await self._relay(event, "ride_id", "driver_id", "message", defaults={"message": "", "ride": {}})

    async def ride_failed(self, event):
        await self._relay(event, "ride_id", "reason", "message", defaults={"message": "No drivers available"})

    async def ride_expired(self, event):
        await self._relay(event, "ride_id", "reason", "message", defaults={"message": "Ride request timed out"})

    async def ride_cancelled(self, event):
        await self._relay(event, "ride_id", "message", defaults={"message": ""})

    async def ride_completed(self, event):
        await self._relay(event, "ride_id", "message", defaults={"message": "Ride completed", "ride": {}})
