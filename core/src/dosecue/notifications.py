"""Notification capability interface and reminder payloads."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from .models import PunctualItem, RecurringItem, TimeSlot


class NotificationPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)


class NotificationCapability(Protocol):
    """Platform local-alert capability.

    ``schedule`` returns an opaque handle. ``cancel`` must accept handles the
    platform has already fired or forgotten.
    """

    async def schedule(self, fire_at: datetime, payload: NotificationPayload) -> str: ...

    async def cancel(self, handle: str) -> None: ...


class InMemoryNotificationCapability:
    """Test capability: keeps scheduled alerts in a dict keyed by handle."""

    def __init__(self) -> None:
        self.scheduled: dict[str, tuple[datetime, NotificationPayload]] = {}
        self.cancelled: list[str] = []

    async def schedule(self, fire_at: datetime, payload: NotificationPayload) -> str:
        handle = uuid.uuid4().hex
        self.scheduled[handle] = (fire_at, payload)
        return handle

    async def cancel(self, handle: str) -> None:
        self.cancelled.append(handle)
        self.scheduled.pop(handle, None)

    def pending(self) -> list[tuple[str, datetime, NotificationPayload]]:
        return sorted(
            ((handle, fire_at, payload) for handle, (fire_at, payload) in self.scheduled.items()),
            key=lambda entry: entry[1],
        )


def _clock_label(value: datetime) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        return f"{day}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def _day_label(value: datetime) -> str:
    return f"{value.strftime('%a, %b')} {_ordinal(value.day)}"


def appointment_payload(item: PunctualItem) -> NotificationPayload:
    with_staff = f" with {item.staff}" if item.staff else ""
    return NotificationPayload(
        title=f"Upcoming: {item.appointment_type}",
        body=f"{item.provider}{with_staff} at {_clock_label(item.start_time)} on {_day_label(item.start_time)}",
        data={"appointmentId": item.id},
    )


def medication_payload(item: RecurringItem, slot: TimeSlot) -> NotificationPayload:
    return NotificationPayload(
        title=f"Time to take {item.name}",
        body=f"{item.dosage} {item.units} ({slot})",
        data={"medicationId": item.id, "slot": slot},
    )
