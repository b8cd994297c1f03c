"""Per-slot adherence status for today's medications.

Statuses are recomputed from the logs and the supplied ``now`` on every call;
nothing is cached between calls.

The evening slot has no following slot, so it can become ``late`` but never
``missed``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from enum import Enum

from .models import DailySlotTimes, IntakeLog, RecurringItem, TimeSlot


class AdherenceStatus(str, Enum):
    TAKEN = "taken"
    LATE = "late"
    MISSED = "missed"
    PENDING = "pending"


def latest_logs_by_slot(logs: Iterable[IntakeLog], day: datetime) -> dict[tuple[str, TimeSlot], IntakeLog]:
    """Last log per (item, slot) on ``day``'s calendar date."""
    latest: dict[tuple[str, TimeSlot], IntakeLog] = {}
    target = day.date()
    for log in logs:
        if log.logged_at.date() != target:
            continue
        key = (log.item_id, log.slot)
        current = latest.get(key)
        if current is None or log.logged_at >= current.logged_at:
            latest[key] = log
    return latest


def status_for(
    item_id: str,
    slot: TimeSlot,
    logs_for_today: Iterable[IntakeLog],
    slot_times: DailySlotTimes,
    now: datetime,
) -> AdherenceStatus:
    if (item_id, slot) in latest_logs_by_slot(logs_for_today, now):
        return AdherenceStatus.TAKEN

    slot_start = datetime.combine(now.date(), slot_times.time_for(slot), tzinfo=now.tzinfo)
    following = DailySlotTimes.next_slot(slot)
    if following is not None:
        next_start = datetime.combine(now.date(), slot_times.time_for(following), tzinfo=now.tzinfo)
        if now >= next_start:
            return AdherenceStatus.MISSED

    if now >= slot_start:
        return AdherenceStatus.LATE
    return AdherenceStatus.PENDING


def statuses_for_item(
    item: RecurringItem,
    logs_for_today: Iterable[IntakeLog],
    slot_times: DailySlotTimes,
    now: datetime,
) -> dict[TimeSlot, AdherenceStatus]:
    logs = list(logs_for_today)
    return {slot: status_for(item.id, slot, logs, slot_times, now) for slot in item.time_slots}
