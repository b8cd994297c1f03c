"""Tests for appointment reminder lead time."""

from datetime import datetime, timedelta

from dosecue.models import PunctualItem, UserNotificationPreferences
from dosecue.reminder_policy import (
    effective_lead_minutes,
    reminder_fire_time,
    travel_time_minutes,
)


def _appointment(travel_minutes: float = 0) -> PunctualItem:
    return PunctualItem(
        id="appt-1",
        start_time=datetime(2024, 3, 4, 14, 0),
        end_time=datetime(2024, 3, 4, 15, 0),
        travel_time=timedelta(minutes=travel_minutes),
    )


def test_travel_time_adds_to_default_reminder():
    prefs = UserNotificationPreferences(default_reminder_minutes=60)
    assert effective_lead_minutes(_appointment(15), prefs) == 75


def test_zero_lead_falls_back_to_floor():
    prefs = UserNotificationPreferences(default_reminder_minutes=0)
    assert effective_lead_minutes(_appointment(0), prefs) == 60


def test_travel_time_alone_is_not_floored():
    prefs = UserNotificationPreferences(default_reminder_minutes=0)
    assert effective_lead_minutes(_appointment(15), prefs) == 15


def test_default_reminder_alone():
    prefs = UserNotificationPreferences(default_reminder_minutes=30)
    assert effective_lead_minutes(_appointment(0), prefs) == 30


def test_custom_floor():
    prefs = UserNotificationPreferences(default_reminder_minutes=0)
    assert effective_lead_minutes(_appointment(0), prefs, floor_minutes=45) == 45


def test_partial_minutes_of_travel_are_dropped():
    assert travel_time_minutes(_appointment(1.5)) == 1


def test_fire_time_subtracts_lead():
    prefs = UserNotificationPreferences(default_reminder_minutes=60)
    assert reminder_fire_time(_appointment(15), prefs) == datetime(2024, 3, 4, 12, 45)
