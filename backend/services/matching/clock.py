"""Time sources for the matching engine."""

from datetime import datetime, timedelta, timezone
import threading


class SystemClock:
    """Wall-clock time, always timezone aware (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """
    A clock that only moves when told to. Lets offer timeouts and staleness
    be exercised without sleeping.
    """

    def __init__(self, start: datetime = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds, **kwargs)
            return self._now

    def set(self, when: datetime) -> None:
        with self._lock:
            self._now = when
