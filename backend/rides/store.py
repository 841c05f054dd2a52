"""
DispatchStore backed by Celery tasks.

Every engine write becomes a task in rides.tasks; nothing here touches the
database directly, so engine locks are never held across a query. Pure
location updates are throttled per driver.
"""

import logging
import threading
import time

from services.matching import DispatchStore
from .tasks import persist_driver_state, persist_offer, persist_ride_outcome

logger = logging.getLogger(__name__)


def _iso(when):
    return when.isoformat() if when else None


class CeleryDispatchStore(DispatchStore):

    def __init__(self, location_interval_seconds: float = 30.0):
        self.location_interval_seconds = float(location_interval_seconds)
        self._last_location_write = {}
        self._lock = threading.Lock()

    def save_driver(self, driver, location_only=False):
        if location_only and not self._location_due(driver.id):
            return
        with self._lock:
            self._last_location_write[driver.id] = time.monotonic()

        location = driver.location
        persist_driver_state.delay(
            driver.id,
            driver.status.value,
            driver.verification_status.value,
            driver.is_location_active,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            last_location_update=_iso(driver.last_location_update),
            state_changed_at=_iso(driver.state_changed_at),
            location_only=location_only,
        )

    def save_offer(self, offer):
        persist_offer.delay(
            offer.ride_id,
            offer.driver_id,
            offer.sequence,
            offer.state.value,
            sent_at=_iso(offer.offered_at),
            expires_at=_iso(offer.expires_at),
            responded_at=_iso(offer.responded_at),
        )

    def save_ride(self, session):
        persist_ride_outcome.delay(
            session.ride.id,
            session.status.value,
            driver_id=session.matched_driver_id,
            failure_reason=session.failure.code if session.failure is not None else None,
            cancellation_reason=session.cancel_reason,
            finished_at=_iso(session.finished_at),
        )

    def _location_due(self, driver_id) -> bool:
        if self.location_interval_seconds <= 0:
            return True
        with self._lock:
            last = self._last_location_write.get(driver_id)
        return last is None or time.monotonic() - last >= self.location_interval_seconds
