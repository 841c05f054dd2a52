"""
Per-ride-request dispatch state.

A DispatchSession ties one RideRequest to the sequence of offers made for
it. It is advanced only by discrete events (offer opened, response received,
timeout fired, cancel) applied by the OfferCoordinator while holding
`session.lock`; the session itself never looks at a clock.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .exceptions import InvalidStatusTransitionError, MatchingError
from .models import (
    DeclineReason,
    DriverId,
    Offer,
    OfferState,
    RideRequest,
    RideStatus,
)

_DECLINE_FOR_STATE = {
    OfferState.REJECTED: DeclineReason.REJECTED,
    OfferState.EXPIRED: DeclineReason.EXPIRED,
}


@dataclass(eq=False)
class DispatchSession:
    ride: RideRequest
    created_at: datetime
    deadline: Optional[datetime] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    # Drivers in the order they were tried; never offered twice
    attempted: List[DriverId] = field(default_factory=list)
    offers: List[Offer] = field(default_factory=list)
    current_offer: Optional[Offer] = None
    declined: Dict[DriverId, DeclineReason] = field(default_factory=dict)

    matched_driver_id: Optional[DriverId] = None
    failure: Optional[MatchingError] = None
    cancel_reason: Optional[str] = None
    finished_at: Optional[datetime] = None
    # Set once the matched driver has been handed back via MatchingService.complete
    assignment_released: bool = False

    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def status(self) -> RideStatus:
        return self.ride.status

    @property
    def is_terminal(self) -> bool:
        return self.ride.status.is_terminal

    @property
    def pending_offer(self) -> Optional[Offer]:
        if self.current_offer is not None and self.current_offer.is_pending:
            return self.current_offer
        return None

    @property
    def reserved_driver_id(self) -> Optional[DriverId]:
        """The driver this session currently keeps busy, if any."""
        offer = self.pending_offer
        if offer is not None:
            return offer.driver_id
        if self.status == RideStatus.MATCHED and not self.assignment_released:
            return self.matched_driver_id
        return None

    def has_attempted(self, driver_id: DriverId) -> bool:
        return driver_id in self.attempted

    def mark_attempted(self, driver_id: DriverId) -> None:
        if driver_id not in self.attempted:
            self.attempted.append(driver_id)

    def is_past_deadline(self, now: datetime) -> bool:
        return self.deadline is not None and now >= self.deadline

    # ---------------------- Transitions ----------------------

    def open_offer(self, driver_id: DriverId, now: datetime, timeout_seconds: float) -> Offer:
        if self.is_terminal:
            raise InvalidStatusTransitionError(f"Session {self.id} is already {self.status.value}")
        if self.pending_offer is not None:
            raise InvalidStatusTransitionError(
                f"Session {self.id} already has a pending offer to driver {self.pending_offer.driver_id}"
            )

        self.ride.transition(RideStatus.OFFERING)
        self.mark_attempted(driver_id)
        offer = Offer(
            session_id=self.id,
            ride_id=self.ride.id,
            driver_id=driver_id,
            offered_at=now,
            expires_at=now + timedelta(seconds=timeout_seconds),
            sequence=len(self.offers),
        )
        self.offers.append(offer)
        self.current_offer = offer
        return offer

    def resolve_offer(self, state: OfferState, now: datetime) -> Offer:
        offer = self.pending_offer
        if offer is None:
            raise InvalidStatusTransitionError(f"Session {self.id} has no pending offer")

        offer.resolve(state, now)
        if state == OfferState.ACCEPTED:
            self.matched_driver_id = offer.driver_id
        else:
            self.declined[offer.driver_id] = _DECLINE_FOR_STATE[state]
        return offer

    def revoke_offer(self, now: datetime) -> Optional[Offer]:
        """Close the pending offer because the session is ending, not because the driver declined."""
        offer = self.pending_offer
        if offer is not None:
            offer.resolve(OfferState.EXPIRED, now)
        return offer

    def decline(self, driver_id: DriverId, reason: DeclineReason) -> None:
        self.mark_attempted(driver_id)
        self.declined[driver_id] = reason

    def finish(self, status: RideStatus, now: datetime, failure: Optional[MatchingError] = None) -> None:
        if not status.is_terminal:
            raise InvalidStatusTransitionError(f"{status.value} is not a terminal ride status")
        self.ride.transition(status)
        self.finished_at = now
        self.failure = failure

    def summary(self) -> dict:
        offer = self.current_offer
        return {
            "session_id": self.id,
            "ride_id": self.ride.id,
            "status": self.status.value,
            "attempted": list(self.attempted),
            "matched_driver_id": self.matched_driver_id,
            "current_offer": {
                "driver_id": offer.driver_id,
                "state": offer.state.value,
                "offered_at": offer.offered_at.isoformat(),
                "expires_at": offer.expires_at.isoformat(),
            } if offer is not None else None,
            "failure": self.failure.code if self.failure is not None else None,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
