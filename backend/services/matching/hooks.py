"""
Narrow interfaces the engine uses to reach its collaborators.

Both default to no-ops so the engine runs standalone (tests, shell). The
Django project plugs in `rides.store.CeleryDispatchStore` and
`realtime.notifications.ChannelsDispatchNotifier`.

Calls into these hooks are fire-and-forget: any exception they raise is
logged and dropped by the engine rather than affecting a match. They may do
network I/O, so the coordinator never calls them while holding a session
lock: calls made inside `deferred_hooks()` are queued on the current thread
and run, in order, once the outermost block has exited.
"""

import threading
from contextlib import contextmanager

_pending = threading.local()


def emit(log, hook, *args, **kwargs) -> None:
    """Call `hook` now, or queue it when a deferred_hooks() block is open."""
    queue = getattr(_pending, "calls", None)
    if queue is not None:
        queue.append((log, hook, args, kwargs))
        return
    _run(log, hook, args, kwargs)


@contextmanager
def deferred_hooks():
    if getattr(_pending, "calls", None) is not None:
        # Nested block: the outermost one flushes
        yield
        return

    _pending.calls = []
    try:
        yield
    finally:
        calls, _pending.calls = _pending.calls, None
        for log, hook, args, kwargs in calls:
            _run(log, hook, args, kwargs)


def _run(log, hook, args, kwargs) -> None:
    try:
        hook(*args, **kwargs)
    except Exception:
        log.exception("Dispatch hook %s failed", getattr(hook, "__name__", hook))


class DispatchNotifier:
    """Pushes offers to drivers and outcomes to riders."""

    def offer_sent(self, session, offer):
        """A new pending offer was opened for offer.driver_id."""

    def offer_closed(self, session, offer):
        """An offer stopped being actionable (expired, or revoked by cancel)."""

    def session_finished(self, session):
        """The ride reached a terminal status (matched/failed/expired/cancelled)."""


class DispatchStore:
    """Write-through persistence of engine state for recovery and audit."""

    def save_driver(self, driver, location_only: bool = False):
        """Persist a driver snapshot. location_only marks pure position updates."""

    def save_offer(self, offer):
        """Persist an offer (new or resolved)."""

    def save_ride(self, session):
        """Persist the session's ride status and outcome."""
