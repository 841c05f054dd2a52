"""
Driver-side operations on the live registry.

Used by:
- HTTP views (status, location fallback)
- WebSocket driver consumer (location stream, status, offer responses)
- engine start-up, to load persisted profiles back into the registry
"""

import logging
from datetime import datetime
from typing import Optional

from drivers.models import DriverProfile
from services.matching import Driver, DriverLocationRegistry, InvalidLocationError, Location

logger = logging.getLogger(__name__)


def get_registry() -> DriverLocationRegistry:
    from rides.engine import get_engine
    return get_engine().registry


def registry_fields(profile: DriverProfile) -> dict:
    """Map a DriverProfile row onto DriverLocationRegistry.register keyword arguments."""
    location = None
    if profile.has_location:
        try:
            location = Location.of(profile.current_latitude, profile.current_longitude)
        except InvalidLocationError:
            logger.warning("Driver %s has a stored location out of range; ignoring it", profile.user_id)

    return {
        "status": profile.status,
        "verification_status": profile.verification_status,
        "is_location_active": profile.is_location_active,
        "location": location,
        "last_location_update": profile.last_location_update if location else None,
        "vehicle_capabilities": profile.vehicle_capabilities or (),
        "state_changed_at": profile.state_changed_at,
    }


def register_profile(profile: DriverProfile, registry: Optional[DriverLocationRegistry] = None) -> Driver:
    registry = registry or get_registry()
    return registry.register(profile.user_id, **registry_fields(profile))


def hydrate_registry(registry: DriverLocationRegistry) -> int:
    """Load every persisted driver into a freshly started registry."""
    count = 0
    for profile in DriverProfile.objects.all().iterator():
        register_profile(profile, registry)
        count += 1
    return count


# DRIVER STATUS UPDATE
def update_driver_status(driver_id, new_status: str) -> Driver:
    """
    Move a driver between online and offline.

    Raises:
        UnknownDriverError: driver not in the registry
        InvalidStatusTransitionError: driver is busy with a ride
    """
    driver = get_registry().set_status(driver_id, new_status)
    logger.info("Driver %s is now %s", driver_id, driver.status.value)
    return driver


def set_driver_verification(driver_id, verification_status: str) -> Driver:
    return get_registry().set_verification(driver_id, verification_status)


def ingest_location(
    driver_id,
    latitude,
    longitude,
    timestamp: Optional[datetime] = None,
    is_location_active: Optional[bool] = None,
) -> bool:
    """
    Apply a driver position report. Used by:
    - HTTP fallback
    - WebSocket driver location stream

    Returns False when the report was older than the one already applied; a
    discarded report leaves `is_location_active` untouched as well.
    """
    return get_registry().update_location(
        driver_id, latitude, longitude, timestamp, is_location_active=is_location_active
    )


def set_location_sharing(driver_id, active: bool) -> Driver:
    """Toggle whether the driver's position may be used for matching."""
    return get_registry().set_active(driver_id, active)
