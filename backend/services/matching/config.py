"""
Tunable thresholds for driver matching and offer dispatch.

No logic here beyond sanity checks, so values can be tuned without
touching the engine.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DispatchConfig:
    """Central configuration for the matching engine."""

    # How long a driver has to accept an offer before it moves to the next candidate
    offer_timeout_seconds: float = 20.0

    # How often the timeout sweep runs; must be shorter than offer_timeout_seconds
    sweep_interval_seconds: float = 5.0

    # Locations older than this make a driver ineligible
    staleness_seconds: float = 120.0

    # Overall matching window for one ride request (0 disables it)
    max_session_seconds: float = 300.0

    # Upper bound on concurrently matching ride requests
    max_active_sessions: int = 1000

    # How many finished sessions stay queryable
    session_history_size: int = 500

    def validate(self) -> None:
        if self.offer_timeout_seconds <= 0:
            raise ValueError("offer_timeout_seconds must be > 0")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")
        if self.sweep_interval_seconds >= self.offer_timeout_seconds:
            raise ValueError("sweep_interval_seconds must be shorter than offer_timeout_seconds")
        if self.staleness_seconds <= 0:
            raise ValueError("staleness_seconds must be > 0")
        if self.max_session_seconds < 0:
            raise ValueError("max_session_seconds must be >= 0")
        if self.max_active_sessions <= 0:
            raise ValueError("max_active_sessions must be > 0")
        if self.session_history_size < 0:
            raise ValueError("session_history_size must be >= 0")


def default_dispatch_config() -> DispatchConfig:
    config = DispatchConfig()
    config.validate()
    return config
