"""Read-only access to per-user notification and slot-time settings."""

from __future__ import annotations

import logging
from typing import Protocol

from .logging import log_extra
from .models import DailySlotTimes, UserNotificationPreferences
from .store import DocumentStore

logger = logging.getLogger(__name__)


def notification_settings_path(user_id: str) -> str:
    return f"users/{user_id}/settings/notifications"


def medication_settings_path(user_id: str) -> str:
    return f"users/{user_id}/settings/medications"


class SettingsProvider(Protocol):
    async def notification_preferences(self, user_id: str) -> UserNotificationPreferences: ...

    async def slot_times(self, user_id: str) -> DailySlotTimes: ...


class StaticSettingsProvider:
    """Same settings for every user."""

    def __init__(
        self,
        prefs: UserNotificationPreferences | None = None,
        slot_times: DailySlotTimes | None = None,
    ) -> None:
        self.prefs = prefs or UserNotificationPreferences()
        self.times = slot_times or DailySlotTimes()

    async def notification_preferences(self, user_id: str) -> UserNotificationPreferences:
        return self.prefs

    async def slot_times(self, user_id: str) -> DailySlotTimes:
        return self.times


class DocumentSettingsProvider:
    """Settings stored under ``users/{uid}/settings``.

    Missing documents or fields fall back to the defaults (notifications on,
    60 minute reminder, slots at 08:00/12:00/18:00).
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def notification_preferences(self, user_id: str) -> UserNotificationPreferences:
        record = await self.store.get(notification_settings_path(user_id))
        if record is None:
            logger.debug("No notification settings for user, using defaults", extra=log_extra(user_id=user_id))
        return UserNotificationPreferences.from_record(record)

    async def slot_times(self, user_id: str) -> DailySlotTimes:
        record = await self.store.get(medication_settings_path(user_id))
        return DailySlotTimes.from_record(record)
