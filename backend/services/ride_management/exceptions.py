"""Custom exceptions for ride management."""


class RideManagementError(Exception):
    """Base class; `code` is the API error code."""
    code = "ride_error"


class RideNotFoundError(RideManagementError):
    """Raised when a ride cannot be found (or does not belong to the caller)."""
    code = "ride_not_found"


class RideNotAvailableError(RideManagementError):
    """Raised when a ride is not in an available state for the operation."""
    code = "ride_not_available"


class DriverProfileNotFoundError(RideManagementError):
    """Raised when a driver user has no driver profile."""
    code = "profile_not_found"


class ActiveRideExistsError(RideManagementError):
    """Raised when user already has an active ride."""
    code = "active_ride_exists"
