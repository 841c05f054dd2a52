"""
Driver matching and offer dispatch engine.

This package handles:
    - Tracking live driver position, availability and reservations
    - Ranking eligible drivers for a ride request
    - Offering rides one driver at a time (daisy-chain) with timeouts
    - Session bookkeeping for every ride request being matched

It has no Django dependency; the Django project plugs in persistence and
notifications through `hooks`.
"""

from .clock import ManualClock, SystemClock
from .config import DispatchConfig, default_dispatch_config
from .coordinator import OfferCoordinator
from .engine import DispatchEngine
from .exceptions import (
    DriverUnavailableError,
    InvalidLocationError,
    InvalidStatusTransitionError,
    MatchingCapacityExceededError,
    MatchingError,
    NoDriverAvailableError,
    RegistryConsistencyError,
    RequestNotPendingError,
    SessionNotFoundError,
    StaleOfferError,
    UnknownDriverError,
)
from .hooks import DispatchNotifier, DispatchStore
from .metrics import MatchingMetrics
from .models import (
    DeclineReason,
    Driver,
    DriverStatus,
    Location,
    Offer,
    OfferState,
    RideRequest,
    RideStatus,
    SearchConstraints,
    VerificationStatus,
)
from .registry import DriverLocationRegistry, EligibleDriver, EligibleDrivers
from .selector import CandidateSelector
from .service import MatchingService
from .session import DispatchSession

__all__ = [
    "CandidateSelector",
    "DeclineReason",
    "DispatchConfig",
    "DispatchEngine",
    "DispatchNotifier",
    "DispatchSession",
    "DispatchStore",
    "Driver",
    "DriverLocationRegistry",
    "DriverStatus",
    "DriverUnavailableError",
    "EligibleDriver",
    "EligibleDrivers",
    "InvalidLocationError",
    "InvalidStatusTransitionError",
    "Location",
    "ManualClock",
    "MatchingCapacityExceededError",
    "MatchingError",
    "MatchingMetrics",
    "MatchingService",
    "NoDriverAvailableError",
    "Offer",
    "OfferCoordinator",
    "OfferState",
    "RegistryConsistencyError",
    "RequestNotPendingError",
    "RideRequest",
    "RideStatus",
    "SearchConstraints",
    "SessionNotFoundError",
    "StaleOfferError",
    "SystemClock",
    "UnknownDriverError",
    "VerificationStatus",
    "default_dispatch_config",
]
