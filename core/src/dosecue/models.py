"""Domain records for medications, appointments, intake logs and settings.

Records are immutable pydantic models. Operations that change an item return
a copy (``model_copy(update=...)``). Each model converts to and from the
camelCase record shape kept in the document store.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import InvalidRange

TimeSlot = Literal["morning", "afternoon", "evening"]

SLOT_ORDER: tuple[TimeSlot, ...] = ("morning", "afternoon", "evening")

FrequencyLabel = Literal[
    "Daily",
    "Twice Daily",
    "Three Times Daily",
    "Every Other Day",
    "Every Three Days",
    "Weekly",
    "Monthly",
    "As Needed",
    "Other",
]

FREQUENCY_OPTIONS: tuple[str, ...] = (
    "Daily",
    "Twice Daily",
    "Three Times Daily",
    "Every Other Day",
    "Every Three Days",
    "Weekly",
    "Monthly",
    "As Needed",
    "Other",
)

DEFAULT_SLOT_TIMES: dict[TimeSlot, time] = {
    "morning": time(8, 0),
    "afternoon": time(12, 0),
    "evening": time(18, 0),
}

DEFAULT_REMINDER_MINUTES = 60


def _coerce_day(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return datetime.fromisoformat(value).date()
    return value


def _coerce_clock(value: Any) -> Any:
    """Accept ``"H:mm"``/``"HH:mm"`` strings alongside ``time`` objects."""
    if isinstance(value, str):
        raw = value.strip()
        hour, _, minute = raw.partition(":")
        try:
            return time(int(hour), int(minute[:2] or 0))
        except ValueError as exc:
            raise ValueError(f"invalid clock time {value!r}, expected HH:mm") from exc
    return value


def align_clock(value: datetime, reference: datetime) -> datetime:
    """Express ``value`` with the same awareness as ``reference``.

    Naive values are local wall-clock time.
    """
    if reference.tzinfo is not None:
        return value.astimezone(reference.tzinfo)
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class RecurringItem(BaseModel):
    """A medication taken in one or more daily slots on its due days."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    dosage: str = "1"
    units: str = "mg"
    frequency: str = "Daily"
    start_date: date
    end_date: date | None = None
    time_slots: tuple[TimeSlot, ...] = ()
    instructions: str = ""
    notification_ids: dict[TimeSlot, str] = Field(default_factory=dict)

    @field_validator("dosage", mode="before")
    @classmethod
    def dosage_as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return f"{v:g}"
        return v

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def day_granularity(cls, v: Any) -> Any:
        return _coerce_day(v)

    @field_validator("time_slots")
    @classmethod
    def slots_in_day_order(cls, v: tuple[TimeSlot, ...]) -> tuple[TimeSlot, ...]:
        return tuple(slot for slot in SLOT_ORDER if slot in v)

    @model_validator(mode="after")
    def end_not_before_start(self) -> "RecurringItem":
        if self.end_date is not None and self.end_date < self.start_date:
            raise InvalidRange(
                f"end_date {self.end_date.isoformat()} is before start_date "
                f"{self.start_date.isoformat()} for medication {self.id!r}"
            )
        return self

    def to_record(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "dosage": self.dosage,
            "units": self.units,
            "frequency": self.frequency,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "timeOfDay": list(self.time_slots),
            "instructions": self.instructions,
            "notificationIds": dict(self.notification_ids),
        }

    @classmethod
    def from_record(cls, item_id: str, record: dict[str, Any]) -> "RecurringItem":
        return cls.model_validate(
            {
                "id": item_id,
                "name": record.get("name", ""),
                "dosage": record.get("dosage", "1"),
                "units": record.get("units", "mg"),
                "frequency": record.get("frequency", "Daily"),
                "start_date": record["startDate"],
                "end_date": record.get("endDate"),
                "time_slots": tuple(record.get("timeOfDay") or ()),
                "instructions": record.get("instructions", ""),
                "notification_ids": record.get("notificationIds") or {},
            }
        )


class PunctualItem(BaseModel):
    """An appointment with a single reminder."""

    model_config = ConfigDict(frozen=True)

    id: str
    start_time: datetime
    end_time: datetime
    travel_time: timedelta = timedelta(0)
    appointment_type: str = "Appointment"
    provider: str = ""
    staff: str = ""
    description: str = ""
    notification_id: str | None = None

    @model_validator(mode="after")
    def range_is_ordered(self) -> "PunctualItem":
        if self.end_time < self.start_time:
            raise InvalidRange(
                f"end_time {self.end_time.isoformat()} is before start_time "
                f"{self.start_time.isoformat()} for appointment {self.id!r}"
            )
        if self.travel_time < timedelta(0):
            raise InvalidRange(f"travel_time must not be negative for appointment {self.id!r}")
        return self

    def to_record(self) -> dict[str, Any]:
        return {
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            # Stored as milliseconds, like the mobile client writes it.
            "travelTime": int(self.travel_time.total_seconds() * 1000),
            "appointmentType": self.appointment_type,
            "provider": self.provider,
            "staff": self.staff,
            "description": self.description,
            "notificationId": self.notification_id,
        }

    @classmethod
    def from_record(cls, item_id: str, record: dict[str, Any]) -> "PunctualItem":
        travel_ms = record.get("travelTime") or 0
        return cls.model_validate(
            {
                "id": item_id,
                "start_time": record["startTime"],
                "end_time": record.get("endTime") or record["startTime"],
                "travel_time": timedelta(milliseconds=float(travel_ms)),
                "appointment_type": record.get("appointmentType") or "Appointment",
                "provider": record.get("provider") or "",
                "staff": record.get("staff") or "",
                "description": record.get("description") or "",
                "notification_id": record.get("notificationId"),
            }
        )


class IntakeLog(BaseModel):
    """One logged intake of a medication for a slot."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    item_id: str
    slot: TimeSlot
    logged_at: datetime

    def to_record(self) -> dict[str, Any]:
        return {
            "medicationId": self.item_id,
            "timeOfDay": self.slot,
            "loggedAt": self.logged_at.isoformat(),
        }

    @classmethod
    def from_record(cls, log_id: str | None, record: dict[str, Any]) -> "IntakeLog":
        return cls.model_validate(
            {
                "id": log_id,
                "item_id": record["medicationId"],
                "slot": record["timeOfDay"],
                "logged_at": record["loggedAt"],
            }
        )


class UserNotificationPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    default_reminder_minutes: int = Field(default=DEFAULT_REMINDER_MINUTES, ge=0)

    @classmethod
    def from_record(cls, record: dict[str, Any] | None) -> "UserNotificationPreferences":
        record = record or {}
        enabled = record.get("enabled")
        minutes = record.get("reminderTime")
        return cls(
            enabled=True if enabled is None else bool(enabled),
            default_reminder_minutes=DEFAULT_REMINDER_MINUTES if minutes is None else int(minutes),
        )

    def to_record(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "reminderTime": self.default_reminder_minutes}


class DailySlotTimes(BaseModel):
    """Clock times for the morning, afternoon and evening slots."""

    model_config = ConfigDict(frozen=True)

    morning: time = DEFAULT_SLOT_TIMES["morning"]
    afternoon: time = DEFAULT_SLOT_TIMES["afternoon"]
    evening: time = DEFAULT_SLOT_TIMES["evening"]

    @field_validator("morning", "afternoon", "evening", mode="before")
    @classmethod
    def parse_clock(cls, v: Any) -> Any:
        return _coerce_clock(v)

    def time_for(self, slot: TimeSlot) -> time:
        return getattr(self, slot)

    @staticmethod
    def next_slot(slot: TimeSlot) -> TimeSlot | None:
        """Slot that follows ``slot`` within the same day, or None for evening."""
        index = SLOT_ORDER.index(slot)
        if index + 1 >= len(SLOT_ORDER):
            return None
        return SLOT_ORDER[index + 1]

    @classmethod
    def from_record(cls, record: dict[str, Any] | None) -> "DailySlotTimes":
        record = record or {}
        values: dict[str, Any] = {}
        for slot in SLOT_ORDER:
            raw = record.get(f"{slot}Time")
            if raw:
                values[slot] = raw
        return cls(**values)

    def to_record(self) -> dict[str, Any]:
        return {f"{slot}Time": self.time_for(slot).strftime("%H:%M") for slot in SLOT_ORDER}
