"""
The dispatch engine container.

Wires registry, selector, coordinator and service around one clock and one
set of collaborators. The engine is an owned object with an explicit
lifecycle; the Django project keeps a single instance on the rides app config.
"""

import logging
import threading
from typing import Callable, Optional

from .clock import SystemClock
from .config import DispatchConfig, default_dispatch_config
from .coordinator import OfferCoordinator
from .hooks import DispatchNotifier, DispatchStore
from .metrics import MatchingMetrics
from .registry import DriverLocationRegistry
from .selector import CandidateSelector
from .service import MatchingService

logger = logging.getLogger(__name__)


class DispatchEngine:

    def __init__(
        self,
        config: Optional[DispatchConfig] = None,
        clock=None,
        notifier: Optional[DispatchNotifier] = None,
        store: Optional[DispatchStore] = None,
    ):
        self.config = config or default_dispatch_config()
        self.config.validate()
        self.clock = clock or SystemClock()
        self.metrics = MatchingMetrics()

        self.registry = DriverLocationRegistry(
            clock=self.clock,
            staleness_seconds=self.config.staleness_seconds,
            store=store,
        )
        self.selector = CandidateSelector(self.registry)
        self.coordinator = OfferCoordinator(
            self.registry,
            self.selector,
            clock=self.clock,
            offer_timeout_seconds=self.config.offer_timeout_seconds,
            notifier=notifier,
            store=store,
            metrics=self.metrics,
        )
        self.service = MatchingService(self.registry, self.coordinator, clock=self.clock, config=self.config)

        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, hydrate: Optional[Callable[[DriverLocationRegistry], int]] = None) -> None:
        """
        Bring the engine up. `hydrate` loads persisted drivers into the
        registry and returns how many it registered.
        """
        with self._lock:
            if self._running:
                return
            loaded = hydrate(self.registry) if hydrate is not None else 0
            self._running = True
        logger.info(
            "Dispatch engine started with %s driver(s) (offer timeout %ss, sweep every %ss)",
            loaded, self.config.offer_timeout_seconds, self.config.sweep_interval_seconds,
        )

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
        cancelled = self.service.shutdown()
        logger.info("Dispatch engine stopped (%d ride(s) cancelled)", cancelled)

    def stats(self) -> dict:
        data = self.service.stats()
        data["running"] = self._running
        return data
