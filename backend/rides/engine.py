"""
Builds the matching engine from Django settings.

The running instance is owned by RidesConfig; use `get_engine()` to reach it.
"""

from django.apps import apps
from django.conf import settings

from services.matching import DispatchConfig, DispatchEngine


def dispatch_config_from_settings() -> DispatchConfig:
    config = DispatchConfig(
        offer_timeout_seconds=getattr(settings, "RIDE_OFFER_TIMEOUT_SECONDS", 20),
        sweep_interval_seconds=getattr(settings, "RIDE_OFFER_MONITOR_INTERVAL", 5),
        staleness_seconds=getattr(settings, "DRIVER_LOCATION_STALE_SECONDS", 120),
        max_session_seconds=getattr(settings, "MATCHING_MAX_SESSION_SECONDS", 300),
        max_active_sessions=getattr(settings, "MATCHING_MAX_ACTIVE_SESSIONS", 1000),
        session_history_size=getattr(settings, "MATCHING_SESSION_HISTORY", 500),
    )
    config.validate()
    return config


def build_engine(clock=None, notifier=None, store=None) -> DispatchEngine:
    """Engine wired to Celery write-through and Channels notifications."""
    from realtime.notifications import ChannelsDispatchNotifier
    from .store import CeleryDispatchStore

    return DispatchEngine(
        config=dispatch_config_from_settings(),
        clock=clock,
        notifier=notifier or ChannelsDispatchNotifier(),
        store=store or CeleryDispatchStore(
            getattr(settings, "LOCATION_PERSIST_INTERVAL_SECONDS", 30)
        ),
    )


def get_engine() -> DispatchEngine:
    return apps.get_app_config("rides").get_engine()


def reset_engine(**overrides) -> DispatchEngine:
    """Stop the current engine and start a fresh one (tests, reloads)."""
    return apps.get_app_config("rides").reset_engine(**overrides)
