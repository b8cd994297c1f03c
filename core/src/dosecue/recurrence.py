"""Due-date rules for recurring medications.

All comparisons are at calendar-day granularity. ``days_since_start`` is a
difference of calendar dates, so the time of day never shifts a result.

Unrecognised frequency labels are never due. ``As Needed`` and ``Other`` are
user-triggered and have no scheduled occurrences either.
"""

from __future__ import annotations

import calendar
import logging
from collections.abc import Iterable
from datetime import date, datetime

from .models import RecurringItem

logger = logging.getLogger(__name__)

# Every day within the range.
_DAILY_FREQUENCIES: frozenset[str] = frozenset({"Daily", "Twice Daily", "Three Times Daily"})

_INTERVAL_DAYS: dict[str, int] = {
    "Daily": 1,
    "Twice Daily": 1,
    "Three Times Daily": 1,
    "Every Other Day": 2,
    "Every Three Days": 3,
    "Weekly": 7,
}

_UNSCHEDULED_FREQUENCIES: frozenset[str] = frozenset({"As Needed", "Other"})


def interval_days(frequency: str) -> int | None:
    """Fixed day interval for ``frequency``, or None when it has none."""
    return _INTERVAL_DAYS.get(frequency)


def is_scheduled_frequency(frequency: str) -> bool:
    return frequency in _INTERVAL_DAYS or frequency == "Monthly"


def _monthly_anchor_day(start: date, candidate: date) -> int:
    # Start on the 31st falls on the last day of shorter months.
    last_day = calendar.monthrange(candidate.year, candidate.month)[1]
    return min(start.day, last_day)


def is_due(
    start_date: date,
    end_date: date | None,
    frequency: str,
    candidate_date: date | None = None,
) -> bool:
    """Return True when a medication with this rule is due on ``candidate_date``.

    ``candidate_date`` defaults to today. Datetimes are reduced to their date.
    """
    if candidate_date is None:
        candidate_date = date.today()
    elif isinstance(candidate_date, datetime):
        candidate_date = candidate_date.date()
    if isinstance(start_date, datetime):
        start_date = start_date.date()
    if isinstance(end_date, datetime):
        end_date = end_date.date()

    if candidate_date < start_date:
        return False
    if end_date is not None and candidate_date > end_date:
        return False

    if frequency in _DAILY_FREQUENCIES:
        return True

    if frequency == "Monthly":
        return candidate_date.day == _monthly_anchor_day(start_date, candidate_date)

    step = _INTERVAL_DAYS.get(frequency)
    if step is not None:
        days_since_start = (candidate_date - start_date).days
        return days_since_start % step == 0

    if frequency not in _UNSCHEDULED_FREQUENCIES:
        logger.debug("Unrecognised frequency %r treated as never due", frequency)
    return False


def item_is_due(item: RecurringItem, candidate_date: date | None = None) -> bool:
    return is_due(item.start_date, item.end_date, item.frequency, candidate_date)


def due_items(items: Iterable[RecurringItem], day: date | None = None) -> list[RecurringItem]:
    """Medications due on ``day`` (default today), in input order."""
    return [item for item in items if item_is_due(item, day)]
