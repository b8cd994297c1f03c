"""Stable error taxonomy for reminder scheduling.

Construction-time range errors are raised to the caller. Occurrence
and platform errors are caught by the lifecycle manager and reported per item.
"""

from __future__ import annotations

from typing import Literal

ErrorClass = Literal[
    "input",
    "occurrence",
    "platform",
    "stale",
    "other",
]


class DosecueError(Exception):
    """Base class for all scheduling errors."""

    code = "dosecue_error"


class InvalidRange(DosecueError):
    """End of a date or time range lies before its start."""

    code = "invalid_range"


class NoUpcomingOccurrence(DosecueError):
    """No occurrence was found inside the search horizon."""

    code = "no_upcoming_occurrence"

    def __init__(self, item_id: str, horizon_days: int, reason: str = "horizon exceeded") -> None:
        self.item_id = item_id
        self.horizon_days = horizon_days
        self.reason = reason
        super().__init__(
            f"No upcoming occurrence for item {item_id!r} within {horizon_days} days ({reason})"
        )


class SchedulingFailed(DosecueError):
    """The notification capability rejected a schedule call."""

    code = "scheduling_failed"

    def __init__(self, item_id: str, slot: str | None, cause: BaseException) -> None:
        self.item_id = item_id
        self.slot = slot
        self.cause = cause
        target = item_id if slot is None else f"{item_id}/{slot}"
        super().__init__(f"Scheduling failed for {target}: {cause}")


class StaleHandleCancelAttempt(DosecueError):
    """A cancel targeted a handle the platform no longer knows about."""

    code = "stale_handle_cancel"

    def __init__(self, handle: str, cause: BaseException | None = None) -> None:
        self.handle = handle
        self.cause = cause
        super().__init__(f"Handle {handle!r} was already gone: {cause}")


ERROR_CLASS_BY_CODE: dict[str, ErrorClass] = {
    InvalidRange.code: "input",
    "validation_error": "input",
    NoUpcomingOccurrence.code: "occurrence",
    SchedulingFailed.code: "platform",
    StaleHandleCancelAttempt.code: "stale",
}


def classify_error_code(error_code: str | None) -> ErrorClass:
    normalized = str(error_code or "").strip().lower()
    if not normalized:
        return "other"
    return ERROR_CLASS_BY_CODE.get(normalized, "other")


def is_recoverable_by_retry(error_code: str | None) -> bool:
    return classify_error_code(error_code) == "platform"
