"""
Ride management service - Core ride lifecycle operations.

This module handles:
    - Creating ride requests and starting matching
    - Accepting/rejecting ride offers
    - Completing rides
    - Cancelling rides
    - Querying ride and offer status
"""

from .ride_lifecycle import (
    RideResult,
    create_ride_request,
    accept_ride,
    reject_ride_offer,
    respond_to_offer,
    complete_ride,
    cancel_ride_by_passenger,
    check_active_ride,
    get_current_passenger_ride,
    get_pending_offers,
    matching_state,
    to_match_request,
)

from .exceptions import (
    RideManagementError,
    RideNotFoundError,
    RideNotAvailableError,
    DriverProfileNotFoundError,
    ActiveRideExistsError,
)

__all__ = [
    # Lifecycle operations
    "RideResult",
    "create_ride_request",
    "accept_ride",
    "reject_ride_offer",
    "respond_to_offer",
    "complete_ride",
    "cancel_ride_by_passenger",
    "check_active_ride",
    "get_current_passenger_ride",
    "get_pending_offers",
    "matching_state",
    "to_match_request",
    # Exceptions
    "RideManagementError",
    "RideNotFoundError",
    "RideNotAvailableError",
    "DriverProfileNotFoundError",
    "ActiveRideExistsError",
]
