"""In-process counters describing how matching is going."""

import threading
from typing import Dict, Any


class MatchingMetrics:
    """
    Thread-safe matching outcome counters.

    Exposed through MatchingService.stats() and the health endpoint.
    """

    COUNTERS = (
        "sessions_started",
        "offers_sent",
        "offers_accepted",
        "offers_rejected",
        "offers_expired",
        "drivers_unavailable",
        "matches",
        "failures",
        "cancellations",
        "expirations",
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {name: 0 for name in self.COUNTERS}
        self._match_seconds_sum = 0.0

    def incr(self, name: str, amount: int = 1) -> None:
        if name not in self._counts:
            raise KeyError(f"Unknown matching metric: {name}")
        with self._lock:
            self._counts[name] += amount

    def record_match(self, seconds_to_match: float) -> None:
        with self._lock:
            self._counts["matches"] += 1
            self._match_seconds_sum += max(0.0, seconds_to_match)

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            data: Dict[str, Any] = dict(self._counts)
            matches = self._counts["matches"]
            data["avg_seconds_to_match"] = (
                round(self._match_seconds_sum / matches, 3) if matches else None
            )
            return data
