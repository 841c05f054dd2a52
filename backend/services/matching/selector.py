"""
Build the ordered candidate list for one ride request.

Uses driver locations and distances from the registry to create a
prioritized list of drivers to offer the ride to (closest first).
"""

import logging
from typing import Iterable, List

from .models import DriverId, Location, SearchConstraints
from .registry import DriverLocationRegistry

logger = logging.getLogger(__name__)


class CandidateSelector:
    """Ranks eligible drivers for a pickup point; holds no state of its own."""

    def __init__(self, registry: DriverLocationRegistry):
        self.registry = registry

    def select(
        self,
        pickup: Location,
        constraints: SearchConstraints,
        excluded: Iterable[DriverId] = (),
    ) -> List[DriverId]:
        """
        Args:
            pickup: Pickup point
            constraints: Radius, required capabilities and optional candidate cap
            excluded: Drivers already attempted in this session

        Returns:
            Driver ids ordered nearest first. An empty list means exhaustion.
        """
        excluded = set(excluded)
        eligible = self.registry.query_eligible(
            pickup,
            constraints.radius_meters,
            constraints.required_capabilities,
        )

        candidates = [item.driver.id for item in eligible if item.driver.id not in excluded]
        if constraints.max_candidates is not None:
            candidates = candidates[:constraints.max_candidates]

        logger.debug(
            "Selected %d candidate(s) within %sm of (%s, %s), %d excluded",
            len(candidates), constraints.radius_meters,
            pickup.latitude, pickup.longitude, len(excluded),
        )
        return candidates
