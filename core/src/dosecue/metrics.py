"""In-memory scheduling metrics.

Asyncio is single-threaded, so plain dicts need no locking.
"""

import time

_start_time = time.monotonic()

_COUNTERS = (
    "notifications_scheduled",
    "notifications_failed",
    "notifications_skipped",
    "notifications_cancelled",
    "stale_cancels",
)

_metrics: dict = {name: 0 for name in _COUNTERS}
_metrics["items"] = {}


def _bump(name: str, item_kind: str | None = None) -> None:
    _metrics[name] += 1
    if item_kind is not None:
        per_kind = _metrics["items"].setdefault(item_kind, {counter: 0 for counter in _COUNTERS})
        per_kind[name] += 1


def record_scheduled(item_kind: str) -> None:
    _bump("notifications_scheduled", item_kind)


def record_failed(item_kind: str) -> None:
    _bump("notifications_failed", item_kind)


def record_skipped(item_kind: str) -> None:
    _bump("notifications_skipped", item_kind)


def record_cancelled() -> None:
    _bump("notifications_cancelled")


def record_stale_cancel() -> None:
    _bump("stale_cancels")


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    snapshot = {name: _metrics[name] for name in _COUNTERS}
    snapshot["uptime_seconds"] = round(time.monotonic() - _start_time, 1)
    snapshot["items"] = {kind: dict(stats) for kind, stats in _metrics["items"].items()}
    return snapshot


def reset_metrics() -> None:
    for name in _COUNTERS:
        _metrics[name] = 0
    _metrics["items"] = {}
