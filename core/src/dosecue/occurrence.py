"""Forward search for the next occurrence of a recurring medication."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta

from .errors import NoUpcomingOccurrence
from .logging import log_extra
from .models import DailySlotTimes, RecurringItem, TimeSlot
from .recurrence import is_due, is_scheduled_frequency

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_DAYS = 400


def _slot_times_in_day_order(
    item: RecurringItem,
    slot_times: DailySlotTimes,
    slot: TimeSlot | None,
) -> list[tuple[TimeSlot, time]]:
    slots = (slot,) if slot is not None else item.time_slots
    pairs = [(s, slot_times.time_for(s)) for s in slots]
    pairs.sort(key=lambda pair: pair[1])
    return pairs


def _iter_occurrences(
    item: RecurringItem,
    from_instant: datetime,
    slot_times: DailySlotTimes,
    slot: TimeSlot | None,
    horizon_days: int,
) -> Iterator[tuple[TimeSlot, datetime]]:
    if horizon_days < 1:
        raise ValueError("horizon_days must be positive")

    pairs = _slot_times_in_day_order(item, slot_times, slot)
    if not pairs:
        return
    if not is_scheduled_frequency(item.frequency):
        return

    first_day: date = max(from_instant.date(), item.start_date)
    for offset in range(horizon_days + 1):
        day = first_day + timedelta(days=offset)
        if item.end_date is not None and day > item.end_date:
            return
        if not is_due(item.start_date, item.end_date, item.frequency, day):
            continue
        for slot_name, clock in pairs:
            candidate = datetime.combine(day, clock, tzinfo=from_instant.tzinfo)
            # A slot that has already passed today waits for the next due day.
            if candidate > from_instant:
                yield slot_name, candidate


def next_due_instant(
    item: RecurringItem,
    from_instant: datetime,
    slot_times: DailySlotTimes,
    *,
    slot: TimeSlot | None = None,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> datetime:
    """Return the first occurrence strictly after ``from_instant``.

    With ``slot`` given only that slot's clock time is considered, otherwise
    every slot of the item. Raises NoUpcomingOccurrence when nothing is due
    within ``horizon_days`` of the search start.
    """
    for _slot, instant in _iter_occurrences(item, from_instant, slot_times, slot, horizon_days):
        return instant

    if not is_scheduled_frequency(item.frequency):
        reason = f"frequency {item.frequency!r} has no scheduled occurrences"
    elif not item.time_slots and slot is None:
        reason = "no time slots"
    elif item.end_date is not None and item.end_date < from_instant.date():
        reason = "ended"
    else:
        reason = "horizon exceeded"
    logger.info(
        "No upcoming occurrence for medication %s: %s",
        item.id,
        reason,
        extra=log_extra(item_id=item.id, slot=slot),
    )
    raise NoUpcomingOccurrence(item.id, horizon_days, reason)


def upcoming_occurrences(
    item: RecurringItem,
    from_instant: datetime,
    slot_times: DailySlotTimes,
    limit: int,
    *,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> list[tuple[TimeSlot, datetime]]:
    """The next ``limit`` (slot, instant) occurrences, earliest first."""
    results: list[tuple[TimeSlot, datetime]] = []
    if limit <= 0:
        return results
    for occurrence in _iter_occurrences(item, from_instant, slot_times, None, horizon_days):
        results.append(occurrence)
        if len(results) >= limit:
            break
    return results
