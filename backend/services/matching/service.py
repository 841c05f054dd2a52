"""
Matching service facade.

The entry point ride owners use: start matching for a ride request, look up
pending offers for a driver, forward driver responses and cancel. Matching is
asynchronous; `request_match` returns as soon as the first offer is out and
the outcome is observed through the session or the DispatchNotifier.
"""

import logging
import threading
from collections import OrderedDict
from datetime import timedelta
from typing import Dict, List, Optional, Set

from .clock import SystemClock
from .config import DispatchConfig, default_dispatch_config
from .coordinator import OfferCoordinator
from .exceptions import (
    MatchingCapacityExceededError,
    RequestNotPendingError,
    SessionNotFoundError,
)
from .models import DriverId, Offer, RideId, RideRequest, RideStatus
from .registry import DriverLocationRegistry
from .session import DispatchSession

logger = logging.getLogger(__name__)


class MatchingService:
    """
    Tracks sessions in three places:

    - active: pending/offering, swept for timeouts
    - assigned: matched and still holding their driver until `complete`
    - history: everything else, bounded by `session_history_size`
    """

    def __init__(
        self,
        registry: DriverLocationRegistry,
        coordinator: OfferCoordinator,
        clock=None,
        config: Optional[DispatchConfig] = None,
    ):
        self.registry = registry
        self.coordinator = coordinator
        self.clock = clock or SystemClock()
        self.config = config or default_dispatch_config()

        # Guards the three maps only; never held while taking a session lock
        self._lock = threading.RLock()
        self._active: Dict[RideId, DispatchSession] = {}
        self._assigned: Dict[RideId, DispatchSession] = {}
        self._history: "OrderedDict[RideId, DispatchSession]" = OrderedDict()

    # ---------------------- Ride owner API ----------------------

    def request_match(self, ride: RideRequest) -> DispatchSession:
        """
        Start matching `ride` and make its first offer.

        Raises:
            RequestNotPendingError: ride is not pending or already has a live session
            MatchingCapacityExceededError: too many rides are matching right now
        """
        if ride.status != RideStatus.PENDING:
            raise RequestNotPendingError(f"Ride {ride.id} is {ride.status.value}, not pending")

        now = self.clock.now()
        deadline = None
        if self.config.max_session_seconds:
            deadline = now + timedelta(seconds=self.config.max_session_seconds)
        session = DispatchSession(ride=ride, created_at=now, deadline=deadline)

        with self._lock:
            if ride.id in self._active or ride.id in self._assigned:
                raise RequestNotPendingError(f"Ride {ride.id} already has an active matching session")
            if len(self._active) >= self.config.max_active_sessions:
                raise MatchingCapacityExceededError(
                    f"{len(self._active)} rides are already matching (limit {self.config.max_active_sessions})"
                )
            self._history.pop(ride.id, None)
            self._active[ride.id] = session

        logger.info("Matching started for ride %s (session %s)", ride.id, session.id)
        self.coordinator.start(session)
        self._settle(session)
        return session

    def list_pending(self, driver_id: DriverId) -> List[RideRequest]:
        """Rides for which `driver_id` currently holds the pending offer."""
        return [session.ride for session, _ in self._pending_for(driver_id)]

    def pending_offers(self, driver_id: DriverId) -> List[Offer]:
        return [offer for _, offer in self._pending_for(driver_id)]

    def respond(self, ride_id: RideId, driver_id: DriverId, accept: bool) -> DispatchSession:
        session = self.get_session(ride_id)
        try:
            return self.coordinator.respond(session, driver_id, accept)
        finally:
            self._settle(session)

    def cancel(self, ride_id: RideId, reason: Optional[str] = None) -> bool:
        """
        Cancel matching for a ride. Returns False when the session had already
        finished (matched rides are handed back with `complete` instead).
        """
        session = self.get_session(ride_id)
        cancelled = self.coordinator.cancel(session, reason)
        self._settle(session)
        if cancelled:
            logger.info("Matching cancelled for ride %s (%s)", ride_id, reason or "no reason given")
        return cancelled

    def complete(self, ride_id: RideId) -> bool:
        """The matched ride is over; put its driver back online. Idempotent."""
        session = self.get_session(ride_id)
        released = self.coordinator.release_assignment(session)
        self._settle(session)
        return released

    def get_session(self, ride_id: RideId) -> DispatchSession:
        with self._lock:
            for sessions in (self._active, self._assigned, self._history):
                session = sessions.get(ride_id)
                if session is not None:
                    return session
        raise SessionNotFoundError(f"No matching session for ride {ride_id}")

    def live_session_ids(self) -> Set[str]:
        """Ids of sessions that may hold a driver: still matching, or matched and not completed."""
        with self._lock:
            return {session.id for session in (*self._active.values(), *self._assigned.values())}

    # ---------------------- Maintenance ----------------------

    def sweep_expired(self) -> int:
        """Run the timeout sweep over every active session."""
        with self._lock:
            sessions = list(self._active.values())

        expired = 0
        for session in sessions:
            try:
                expired += self.coordinator.expire_due(session)
            except Exception:
                logger.exception("Timeout sweep failed for ride %s", session.ride.id)
            self._settle(session)
        return expired

    def shutdown(self) -> int:
        """Cancel every ride still matching. Returns how many were cancelled."""
        with self._lock:
            sessions = list(self._active.values())

        cancelled = 0
        for session in sessions:
            if self.coordinator.cancel(session, "shutdown"):
                cancelled += 1
            self._settle(session)
        if cancelled:
            logger.info("Matching shut down; cancelled %d active session(s)", cancelled)
        return cancelled

    def stats(self) -> dict:
        with self._lock:
            counts = {
                "active_sessions": len(self._active),
                "assigned_sessions": len(self._assigned),
                "archived_sessions": len(self._history),
            }
        counts["registered_drivers"] = len(self.registry)
        counts["busy_drivers"] = len(self.registry.busy_driver_ids())
        counts["metrics"] = self.coordinator.metrics.snapshot()
        return counts

    # ---------------------- Helpers ----------------------

    def _pending_for(self, driver_id: DriverId):
        with self._lock:
            sessions = list(self._active.values())

        found = []
        for session in sessions:
            offer = session.pending_offer
            if offer is not None and offer.driver_id == driver_id:
                found.append((session, offer))
        found.sort(key=lambda item: item[1].offered_at)
        return found

    def _settle(self, session: DispatchSession) -> None:
        """Move a session to the map matching its current state."""
        ride_id = session.ride.id
        with self._lock:
            if not session.is_terminal:
                return
            if self._active.get(ride_id) is session:
                del self._active[ride_id]

            if session.reserved_driver_id is not None:
                self._assigned[ride_id] = session
                return

            if self._assigned.get(ride_id) is session:
                del self._assigned[ride_id]
            self._archive(session)

    def _archive(self, session: DispatchSession) -> None:
        size = self.config.session_history_size
        if size <= 0:
            return
        self._history[session.ride.id] = session
        self._history.move_to_end(session.ride.id)
        while len(self._history) > size:
            self._history.popitem(last=False)
