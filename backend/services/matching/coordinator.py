"""
Offer dispatch and expiry handling.

Handles the daisy-chain pattern for ride offers:
1. Reserve the best remaining candidate and offer the ride
2. Wait for a response or the offer timeout
3. If rejected/expired, release the driver and offer to the next candidate
4. Repeat until accepted or no candidates are left

Every operation on a session runs under `session.lock`; store and notifier
calls made meanwhile are queued and run once the lock is released.
Reservations go through the registry, so a driver lost to a concurrent
session simply shows up here as DriverUnavailableError and the next
candidate is tried.
"""

import logging
from typing import Optional

from .clock import SystemClock
from .exceptions import (
    DriverUnavailableError,
    NoDriverAvailableError,
    RegistryConsistencyError,
    StaleOfferError,
    UnknownDriverError,
)
from .hooks import DispatchNotifier, DispatchStore, deferred_hooks, emit
from .metrics import MatchingMetrics
from .models import DeclineReason, DriverId, Offer, OfferState, RideStatus
from .registry import DriverLocationRegistry
from .selector import CandidateSelector
from .session import DispatchSession

logger = logging.getLogger(__name__)


class OfferCoordinator:

    def __init__(
        self,
        registry: DriverLocationRegistry,
        selector: CandidateSelector,
        clock=None,
        offer_timeout_seconds: float = 20.0,
        notifier: Optional[DispatchNotifier] = None,
        store: Optional[DispatchStore] = None,
        metrics: Optional[MatchingMetrics] = None,
    ):
        self.registry = registry
        self.selector = selector
        self.clock = clock or SystemClock()
        self.offer_timeout_seconds = float(offer_timeout_seconds)
        self.notifier = notifier or DispatchNotifier()
        self.store = store or DispatchStore()
        self.metrics = metrics or MatchingMetrics()

    # ---------------------- Offers ----------------------

    def start(self, session: DispatchSession) -> Optional[Offer]:
        """Make the first offer of a freshly created session."""
        with deferred_hooks(), session.lock:
            self.metrics.incr("sessions_started")
            return self.advance(session)

    def make_offer(self, session: DispatchSession, driver_id: DriverId) -> bool:
        """
        Reserve `driver_id` and offer it the ride.

        Returns False when the driver could not be reserved; the driver is then
        recorded as declined (unavailable) and will not be tried again.
        """
        with deferred_hooks(), session.lock:
            if session.is_terminal or session.pending_offer is not None:
                return False

            session.mark_attempted(driver_id)
            try:
                self.registry.reserve(driver_id, holder=session.id)
            except (DriverUnavailableError, UnknownDriverError) as exc:
                session.decline(driver_id, DeclineReason.UNAVAILABLE)
                self.metrics.incr("drivers_unavailable")
                logger.debug("Ride %s: skipping driver %s (%s)", session.ride.id, driver_id, exc)
                return False

            offer = session.open_offer(driver_id, self.clock.now(), self.offer_timeout_seconds)
            self.metrics.incr("offers_sent")
            logger.debug(
                "Offered ride %s to driver %s (offer %s, expires %s)",
                session.ride.id, driver_id, offer.id, offer.expires_at,
            )

            self._emit(self.store.save_offer, offer)
            self._emit(self.store.save_ride, session)
            self._emit(self.notifier.offer_sent, session, offer)
            return True

    def advance(self, session: DispatchSession) -> Optional[Offer]:
        """
        Offer the ride to the next candidate, or fail the session when there
        are none left. Returns the newly opened offer, if any.
        """
        with deferred_hooks(), session.lock:
            if session.is_terminal:
                return None
            if session.pending_offer is not None:
                return session.pending_offer

            try:
                while True:
                    candidates = self.selector.select(
                        session.ride.pickup,
                        session.ride.constraints,
                        excluded=session.attempted,
                    )
                    if not candidates:
                        self._finish(
                            session,
                            RideStatus.FAILED,
                            NoDriverAvailableError(f"No driver available for ride {session.ride.id}"),
                        )
                        return None

                    for driver_id in candidates:
                        if self.make_offer(session, driver_id):
                            return session.current_offer
                    # Every candidate was taken meanwhile; they are all attempted now, so re-query
            except RegistryConsistencyError as exc:
                logger.exception("Registry inconsistency while matching ride %s", session.ride.id)
                self._fail_safely(session, exc)
                return None

    def respond(self, session: DispatchSession, driver_id: DriverId, accept: bool) -> DispatchSession:
        """
        Apply a driver's answer to the current offer.

        Raises:
            StaleOfferError: the offer is not pending for this driver (already
                answered, expired, revoked or never made). Nothing changes.
        """
        with deferred_hooks(), session.lock:
            offer = session.pending_offer
            if session.is_terminal or offer is None or offer.driver_id != driver_id:
                raise StaleOfferError(
                    f"No pending offer for driver {driver_id} on ride {session.ride.id}"
                )

            now = self.clock.now()
            if offer.is_due(now):
                # Timed out but not swept yet: apply the timeout now
                self._expire_offer(session, now)
                self.advance(session)
                raise StaleOfferError(f"Offer for ride {session.ride.id} has timed out")

            if accept:
                session.resolve_offer(OfferState.ACCEPTED, now)
                self.metrics.incr("offers_accepted")
                self.metrics.record_match((now - session.created_at).total_seconds())
                self._emit(self.store.save_offer, offer)
                self._finish(session, RideStatus.MATCHED)
            else:
                session.resolve_offer(OfferState.REJECTED, now)
                self.registry.release(driver_id, holder=session.id)
                self.metrics.incr("offers_rejected")
                logger.debug("Driver %s rejected ride %s", driver_id, session.ride.id)
                self._emit(self.store.save_offer, offer)
                self.advance(session)

            return session

    # ---------------------- Timeouts & cancellation ----------------------

    def expire_due(self, session: DispatchSession) -> int:
        """
        Timeout sweep step for one session.

        Expires an offer past its deadline and moves on to the next candidate;
        ends the whole session as expired once its matching window is over.
        Returns how many offers/sessions were expired.
        """
        with deferred_hooks(), session.lock:
            if session.is_terminal:
                return 0

            now = self.clock.now()
            expired = 0
            offer = session.pending_offer
            if offer is not None and offer.is_due(now):
                self._expire_offer(session, now)
                expired += 1

            if session.is_past_deadline(now):
                revoked = self._revoke_current(session, now)
                self._finish(session, RideStatus.EXPIRED)
                self._close_revoked(session, revoked)
                return expired + 1

            if expired:
                self.advance(session)
            return expired

    def cancel(self, session: DispatchSession, reason: Optional[str] = None) -> bool:
        """
        Cancel a session that has not finished yet, releasing its driver once.
        Returns False when the session was already terminal.
        """
        with deferred_hooks(), session.lock:
            if session.is_terminal:
                return False
            revoked = self._revoke_current(session, self.clock.now())
            session.cancel_reason = reason
            self._finish(session, RideStatus.CANCELLED)
            self._close_revoked(session, revoked)
            return True

    def release_assignment(self, session: DispatchSession) -> bool:
        """Return a matched driver to online once the ride owner is done with it."""
        with deferred_hooks(), session.lock:
            if session.status != RideStatus.MATCHED or session.assignment_released:
                return False
            self.registry.release(session.matched_driver_id, holder=session.id)
            session.assignment_released = True
            logger.info("Ride %s released driver %s", session.ride.id, session.matched_driver_id)
            return True

    # ---------------------- Helpers ----------------------

    def _expire_offer(self, session: DispatchSession, now) -> Offer:
        offer = session.resolve_offer(OfferState.EXPIRED, now)
        self.registry.release(offer.driver_id, holder=session.id)
        self.metrics.incr("offers_expired")
        logger.debug("Offer %s to driver %s expired (ride %s)", offer.id, offer.driver_id, session.ride.id)
        self._emit(self.store.save_offer, offer)
        self._emit(self.notifier.offer_closed, session, offer)
        return offer

    def _revoke_current(self, session: DispatchSession, now) -> Optional[Offer]:
        offer = session.revoke_offer(now)
        if offer is not None:
            self.registry.release(offer.driver_id, holder=session.id)
        return offer

    def _close_revoked(self, session: DispatchSession, offer: Optional[Offer]) -> None:
        # Emitted after the session is terminal so the driver sees the final status
        if offer is not None:
            self._emit(self.store.save_offer, offer)
            self._emit(self.notifier.offer_closed, session, offer)

    def _fail_safely(self, session: DispatchSession, exc: RegistryConsistencyError) -> None:
        session.revoke_offer(self.clock.now())
        self.registry.release_all(session.id)
        self._finish(session, RideStatus.FAILED, exc)

    def _finish(self, session: DispatchSession, status: RideStatus, failure=None) -> None:
        session.finish(status, self.clock.now(), failure)

        if status == RideStatus.FAILED:
            self.metrics.incr("failures")
        elif status == RideStatus.CANCELLED:
            self.metrics.incr("cancellations")
        elif status == RideStatus.EXPIRED:
            self.metrics.incr("expirations")

        logger.info(
            "Ride %s matching finished: %s%s",
            session.ride.id,
            status.value,
            f" (driver {session.matched_driver_id})" if status == RideStatus.MATCHED else
            f" ({failure.code})" if failure is not None else "",
        )
        self._emit(self.store.save_ride, session)
        self._emit(self.notifier.session_finished, session)

    def _emit(self, hook, *args) -> None:
        emit(logger, hook, *args)
