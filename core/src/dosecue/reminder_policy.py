"""Lead time for appointment reminders.

Travel time is an additional buffer in front of the user's reminder window,
never a replacement for it. A combined lead of zero falls back to
``REMINDER_FLOOR_MINUTES`` so no appointment is left without a reminder.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from .models import PunctualItem, UserNotificationPreferences

REMINDER_FLOOR_MINUTES = 60


def travel_time_minutes(appointment: PunctualItem) -> int:
    return max(0, int(appointment.travel_time.total_seconds() // 60))


def effective_lead_minutes(
    appointment: PunctualItem,
    prefs: UserNotificationPreferences,
    *,
    floor_minutes: int = REMINDER_FLOOR_MINUTES,
) -> int:
    lead = travel_time_minutes(appointment) + prefs.default_reminder_minutes
    if lead == 0:
        return floor_minutes
    return lead


def reminder_fire_time(
    appointment: PunctualItem,
    prefs: UserNotificationPreferences,
    *,
    floor_minutes: int = REMINDER_FLOOR_MINUTES,
) -> datetime:
    lead = effective_lead_minutes(appointment, prefs, floor_minutes=floor_minutes)
    return appointment.start_time - timedelta(minutes=lead)
