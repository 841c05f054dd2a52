"""Rides app configuration; owns the process-wide matching engine."""

import logging
import threading

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class RidesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'rides'

    def __init__(self, app_name, app_module):
        super().__init__(app_name, app_module)
        self._engine = None
        self._engine_lock = threading.Lock()

    def ready(self):
        from .offer_timeout_monitor import start_offer_timeout_monitor
        start_offer_timeout_monitor()

    def get_engine(self):
        """The running engine, built and hydrated from the database on first use."""
        with self._engine_lock:
            if self._engine is None:
                self._engine = self._start_engine()
            return self._engine

    def reset_engine(self, **overrides):
        with self._engine_lock:
            if self._engine is not None:
                self._engine.stop()
            self._engine = self._start_engine(**overrides)
            return self._engine

    def _start_engine(self, **overrides):
        from drivers.services import hydrate_registry
        from .engine import build_engine

        engine = build_engine(**overrides)
        engine.start(hydrate=hydrate_registry)
        return engine
