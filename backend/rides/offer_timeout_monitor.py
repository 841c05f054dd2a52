"""It runs a background thread that keeps sweeping the matching engine for timed-out offers"""

import logging
import os
import threading
from typing import Callable, Optional

from django.conf import settings

logger = logging.getLogger(__name__)

_monitor_instance: Optional["OfferTimeoutMonitor"] = None


class OfferTimeoutMonitor:
    def __init__(self, engine_provider: Callable, interval_seconds: float):
        self.engine_provider = engine_provider
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="offer-timeout-monitor", daemon=True)

    def start(self):
        if not self._thread.is_alive():
            logger.info("Starting ride offer timeout monitor (interval=%ss)", self.interval_seconds)
            self._thread.start()

    def stop(self):
        self._stop_event.set()

    def tick(self) -> int:
        expired = self.engine_provider().service.sweep_expired()
        if expired:
            logger.info("Offer monitor expired %s offer(s)/session(s)", expired)
        return expired

    def _run(self):
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.tick()
            except Exception:  # pragma: no cover - best effort logging
                logger.exception("Offer timeout monitor encountered an error")


def start_offer_timeout_monitor():
    global _monitor_instance

    if getattr(settings, "ENABLE_OFFER_TIMEOUT_MONITOR", True) is False:
        return

    # Avoid double-start in Django's autoreload parent process
    run_main = os.environ.get("RUN_MAIN")
    if run_main not in (None, "true"):
        return

    if _monitor_instance is None:
        from .engine import get_engine

        interval_seconds = getattr(settings, "RIDE_OFFER_MONITOR_INTERVAL", 5)
        _monitor_instance = OfferTimeoutMonitor(get_engine, interval_seconds)
        _monitor_instance.start()
