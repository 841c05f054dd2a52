"""
Core data models for the matching engine.

Plain dataclasses and closed enumerations, independent of the Django ORM.
The ORM rows in `drivers.models` / `rides.models` are the durable copies;
these are the live, in-memory view the engine matches against.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Union

from common.utils.geo import is_valid_coordinate
from .exceptions import InvalidLocationError, InvalidStatusTransitionError

DriverId = Union[int, str]
RideId = Union[int, str]


class DriverStatus(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    BUSY = "busy"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    UNDER_REVIEW = "under_review"


class RideStatus(str, Enum):
    PENDING = "pending"
    OFFERING = "offering"
    MATCHED = "matched"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_RIDE_STATUSES


class OfferState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class DeclineReason(str, Enum):
    """Why a candidate did not end up with the ride."""
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"
    EXPIRED = "expired"


TERMINAL_RIDE_STATUSES = frozenset({
    RideStatus.MATCHED,
    RideStatus.EXPIRED,
    RideStatus.CANCELLED,
    RideStatus.FAILED,
})

RIDE_TRANSITIONS: Dict[RideStatus, FrozenSet[RideStatus]] = {
    RideStatus.PENDING: frozenset({
        RideStatus.OFFERING,
        RideStatus.FAILED,
        RideStatus.CANCELLED,
        RideStatus.EXPIRED,
    }),
    RideStatus.OFFERING: frozenset({
        RideStatus.OFFERING,
        RideStatus.MATCHED,
        RideStatus.FAILED,
        RideStatus.CANCELLED,
        RideStatus.EXPIRED,
    }),
    RideStatus.MATCHED: frozenset(),
    RideStatus.EXPIRED: frozenset(),
    RideStatus.CANCELLED: frozenset(),
    RideStatus.FAILED: frozenset(),
}

# Moves a caller may request through set_status; busy is owned by reserve/release
DRIVER_STATUS_TRANSITIONS: Dict[DriverStatus, FrozenSet[DriverStatus]] = {
    DriverStatus.OFFLINE: frozenset({DriverStatus.ONLINE}),
    DriverStatus.ONLINE: frozenset({DriverStatus.OFFLINE}),
    DriverStatus.BUSY: frozenset(),
}


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    @classmethod
    def of(cls, lat, lon) -> "Location":
        """Build a validated location, raising InvalidLocationError on bad input."""
        if not is_valid_coordinate(lat, lon):
            raise InvalidLocationError(f"Invalid coordinates: lat={lat!r}, lon={lon!r}")
        return cls(float(lat), float(lon))


@dataclass(frozen=True)
class Driver:
    """
    Point-in-time snapshot of a driver's live state, as held by the registry.
    """
    id: DriverId
    status: DriverStatus = DriverStatus.OFFLINE
    verification_status: VerificationStatus = VerificationStatus.PENDING
    is_location_active: bool = False
    location: Optional[Location] = None
    last_location_update: Optional[datetime] = None
    vehicle_capabilities: FrozenSet[str] = frozenset()
    reserved_by: Optional[str] = None
    # Strictly increasing per driver; bumped by every non-location change
    state_changed_at: Optional[datetime] = None

    def is_dispatchable(self, now: datetime, staleness_seconds: float) -> bool:
        if self.status != DriverStatus.ONLINE:
            return False
        if self.verification_status != VerificationStatus.APPROVED:
            return False
        if not self.is_location_active or self.location is None:
            return False
        if self.last_location_update is None:
            return False
        return (now - self.last_location_update).total_seconds() <= staleness_seconds


@dataclass(frozen=True)
class SearchConstraints:
    radius_meters: float = 5000.0
    required_capabilities: FrozenSet[str] = frozenset()
    max_candidates: Optional[int] = None

    @classmethod
    def build(
        cls,
        radius_meters: float = 5000.0,
        required_capabilities: Iterable[str] = (),
        max_candidates: Optional[int] = None,
    ) -> "SearchConstraints":
        if radius_meters is None or float(radius_meters) <= 0:
            raise ValueError("radius_meters must be > 0")
        return cls(
            radius_meters=float(radius_meters),
            required_capabilities=frozenset(required_capabilities or ()),
            max_candidates=max_candidates,
        )


@dataclass
class RideRequest:
    """
    A ride request as seen by the matching core. The external ride subsystem
    owns the durable record; the core only moves `status` along RIDE_TRANSITIONS.
    """
    id: RideId
    pickup: Location
    requested_at: datetime
    rider_id: Optional[Union[int, str]] = None
    dropoff: Optional[Location] = None
    constraints: SearchConstraints = field(default_factory=SearchConstraints)
    status: RideStatus = RideStatus.PENDING

    def transition(self, new_status: RideStatus) -> None:
        allowed = RIDE_TRANSITIONS[self.status]
        if new_status not in allowed:
            raise InvalidStatusTransitionError(
                f"Ride {self.id}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status


@dataclass
class Offer:
    """A time-bounded proposal of one ride to one driver."""
    session_id: str
    ride_id: RideId
    driver_id: DriverId
    offered_at: datetime
    expires_at: datetime
    sequence: int = 0
    state: OfferState = OfferState.PENDING
    responded_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_pending(self) -> bool:
        return self.state == OfferState.PENDING

    def is_due(self, now: datetime) -> bool:
        return self.is_pending and now >= self.expires_at

    def resolve(self, state: OfferState, now: datetime) -> None:
        if not self.is_pending:
            raise InvalidStatusTransitionError(
                f"Offer {self.id} already {self.state.value}"
            )
        if state == OfferState.PENDING:
            raise InvalidStatusTransitionError("An offer cannot be resolved back to pending")
        self.state = state
        self.responded_at = now
