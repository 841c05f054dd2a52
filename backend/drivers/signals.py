"""Keep the live registry in step with driver profiles edited outside the engine."""

import logging

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from drivers.models import DriverProfile
from services.matching import DriverUnavailableError, UnknownDriverError

logger = logging.getLogger(__name__)


@receiver(post_save, sender=DriverProfile)
def sync_driver_profile(sender, instance, created, **kwargs):
    # Write-through from the engine uses queryset.update() and never lands here
    from drivers.services import register_profile, get_registry

    registry = get_registry()
    if created or instance.user_id not in registry:
        register_profile(instance, registry)
        logger.info("Registered driver %s (%s)", instance.user_id, instance.vehicle_number)
        return

    # Live status and position belong to the registry; only admin-owned fields flow in
    registry.set_verification(instance.user_id, instance.verification_status)
    registry.set_capabilities(instance.user_id, instance.vehicle_capabilities or ())


@receiver(post_delete, sender=DriverProfile)
def forget_driver_profile(sender, instance, **kwargs):
    from drivers.services import get_registry

    try:
        get_registry().remove(instance.user_id)
    except UnknownDriverError:
        pass
    except DriverUnavailableError:
        logger.warning("Driver %s deleted while holding a ride; registry entry kept", instance.user_id)
