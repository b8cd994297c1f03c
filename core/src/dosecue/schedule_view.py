"""Upcoming-today list combining appointments and medication slots."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from .models import DailySlotTimes, PunctualItem, RecurringItem, TimeSlot, align_clock
from .recurrence import item_is_due

EntryKind = Literal["appointment", "medication"]


@dataclass(frozen=True)
class ScheduleEntry:
    id: str
    item_id: str
    kind: EntryKind
    title: str
    description: str
    start: datetime
    time_until: str
    slot: TimeSlot | None = None


def time_until_label(start: datetime, now: datetime) -> str:
    """Short countdown such as ``(Now)``, ``(5 mins)`` or ``(2 hours)``.

    Hours are rounded half up, so anything from 30 minutes reads as an hour.
    """
    start = align_clock(start, now)
    start_minute = start.replace(second=0, microsecond=0)
    now_minute = now.replace(second=0, microsecond=0)
    if start_minute == now_minute:
        return "(Now)"

    seconds = (start - now).total_seconds()
    hours = math.floor(seconds / 3600 + 0.5)
    minutes = int(seconds // 60) % 60
    if hours == 0:
        return "(1 min)" if minutes == 1 else f"({minutes} mins)"
    if hours == 1:
        return "(1 hour)"
    return f"({hours} hours)"


def build_today_schedule(
    medications: Iterable[RecurringItem],
    appointments: Iterable[PunctualItem],
    slot_times: DailySlotTimes,
    now: datetime,
) -> list[ScheduleEntry]:
    """Entries later today than ``now`` (to the minute), earliest first."""
    now = now.replace(second=0, microsecond=0)
    today = now.date()
    entries: list[ScheduleEntry] = []

    for appointment in appointments:
        start = align_clock(appointment.start_time, now)
        if start > now and start.date() == today:
            with_staff = f" with {appointment.staff}" if appointment.staff else ""
            entries.append(
                ScheduleEntry(
                    id=appointment.id,
                    item_id=appointment.id,
                    kind="appointment",
                    title=appointment.provider or appointment.appointment_type,
                    description=appointment.description or f"{appointment.appointment_type}{with_staff}",
                    start=start,
                    time_until=time_until_label(start, now),
                )
            )

    for medication in medications:
        if not item_is_due(medication, today):
            continue
        for slot in medication.time_slots:
            start = datetime.combine(today, slot_times.time_for(slot), tzinfo=now.tzinfo)
            if start <= now:
                continue
            entries.append(
                ScheduleEntry(
                    id=f"{medication.id}-{slot}",
                    item_id=medication.id,
                    kind="medication",
                    title=medication.name,
                    description=f"Need to take {medication.dosage} {medication.units}",
                    start=start,
                    time_until=time_until_label(start, now),
                    slot=slot,
                )
            )

    entries.sort(key=lambda entry: entry.start)
    return entries
