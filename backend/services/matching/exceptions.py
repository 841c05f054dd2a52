"""Exceptions raised by the matching and dispatch engine."""


class MatchingError(Exception):
    """Base class for matching engine errors."""

    code = "matching_error"


class InvalidLocationError(MatchingError):
    """Raised when coordinates fall outside the valid lat/lon range."""

    code = "invalid_location"


class UnknownDriverError(MatchingError):
    """Raised when a driver is not registered with the location registry."""

    code = "unknown_driver"


class DriverUnavailableError(MatchingError):
    """Raised when a driver cannot be reserved (not dispatchable or already reserved)."""

    code = "driver_unavailable"


class StaleOfferError(MatchingError):
    """Raised when responding to an offer that is no longer pending."""

    code = "stale_offer"


class NoDriverAvailableError(MatchingError):
    """Terminal outcome of a session whose candidates are exhausted."""

    code = "no_driver_available"


class InvalidStatusTransitionError(MatchingError):
    """Raised when a driver or ride status change is not permitted."""

    code = "invalid_status_transition"


class SessionNotFoundError(MatchingError):
    """Raised when no dispatch session exists for a ride."""

    code = "session_not_found"


class RequestNotPendingError(MatchingError):
    """Raised when matching is requested for a ride that is not pending."""

    code = "request_not_pending"


class MatchingCapacityExceededError(MatchingError):
    """Raised when too many sessions are already being matched."""

    code = "matching_capacity_exceeded"


class RegistryConsistencyError(MatchingError):
    """
    Internal fault: registry state contradicts the reservation bookkeeping
    (e.g. a busy driver with no reservation holder). Sessions hitting this
    fail safely instead of propagating the corrupt state.
    """

    code = "registry_inconsistent"
