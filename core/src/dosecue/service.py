"""Persistence and orchestration for medications, appointments and intake logs.

A save always persists the record first and then writes the handle(s) in a
follow-up update, so a reminder that cannot be scheduled never blocks the
save itself. Any edit invalidates the previous handles.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from .adherence import AdherenceStatus, statuses_for_item
from .config import Config
from .errors import InvalidRange
from .lifecycle import CareItem, NotificationLifecycleManager, ScheduleOutcome, unscheduled
from .logging import log_extra
from .models import IntakeLog, PunctualItem, RecurringItem, TimeSlot
from .notifications import NotificationCapability
from .recurrence import due_items
from .schedule_view import ScheduleEntry, build_today_schedule
from .settings import DocumentSettingsProvider, SettingsProvider
from .store import DocumentStore, InMemoryDocumentStore, PostgresDocumentStore

logger = logging.getLogger(__name__)


def medications_path(user_id: str) -> str:
    return f"users/{user_id}/medications"


def appointments_path(user_id: str) -> str:
    return f"users/{user_id}/appointments"


def intake_logs_path(user_id: str) -> str:
    return f"users/{user_id}/medicationLogs"


def new_record_id() -> str:
    return uuid.uuid4().hex


# pydantic's ValidationError is a ValueError.
_MALFORMED_RECORD_ERRORS = (ValueError, TypeError, KeyError, InvalidRange)


def _decode(model: Any, item_id: str, path: str, record: dict[str, Any], user_id: str) -> Any:
    """Decode a stored record, or return None with a warning when it is malformed."""
    try:
        return model.from_record(item_id, record)
    except _MALFORMED_RECORD_ERRORS as exc:
        logger.warning(
            "Skipping malformed record %s: %s",
            path,
            exc,
            extra=log_extra(user_id=user_id, path=path),
        )
        return None


class CareScheduleService:
    def __init__(
        self,
        store: DocumentStore,
        manager: NotificationLifecycleManager,
        settings: SettingsProvider | None = None,
    ) -> None:
        self.store = store
        self.manager = manager
        self.settings = settings or manager.settings

    async def _schedule(self, item: CareItem, user_id: str) -> ScheduleOutcome:
        try:
            if isinstance(item, RecurringItem):
                return await self.manager.schedule_medication(item, user_id)
            return await self.manager.schedule_appointment(item, user_id)
        except Exception as exc:
            logger.exception(
                "Reminder for %s could not be scheduled; record kept without one",
                item.id,
                extra=log_extra(item_id=item.id, user_id=user_id),
            )
            return ScheduleOutcome(unscheduled(item), "failed", str(exc))

    # -- medications ---------------------------------------------------

    async def list_medications(self, user_id: str) -> list[RecurringItem]:
        items: list[RecurringItem] = []
        for document in await self.store.query(medications_path(user_id)):
            item = _decode(RecurringItem, document.id, document.path, document.data, user_id)
            if item is not None:
                items.append(item)
        return items

    async def get_medication(self, user_id: str, item_id: str) -> RecurringItem | None:
        record = await self.store.get(f"{medications_path(user_id)}/{item_id}")
        return None if record is None else RecurringItem.from_record(item_id, record)

    async def save_medication(self, user_id: str, item: RecurringItem) -> ScheduleOutcome:
        """Create or replace a medication and schedule a reminder for each of its slots."""
        if not item.id:
            item = item.model_copy(update={"id": new_record_id()})
        path = f"{medications_path(user_id)}/{item.id}"

        record = await self.store.get(path)
        existing = None if record is None else _decode(RecurringItem, item.id, path, record, user_id)
        if existing is not None:
            await self.manager.cancel_medication(existing)

        await self.store.set(path, item.model_copy(update={"notification_ids": {}}).to_record())
        outcome = await self._schedule(item, user_id)
        await self.store.update(path, {"notificationIds": dict(outcome.item.notification_ids)})
        return outcome

    async def delete_medication(self, user_id: str, item_id: str) -> bool:
        path = f"{medications_path(user_id)}/{item_id}"
        record = await self.store.get(path)
        if record is None:
            return False
        existing = _decode(RecurringItem, item_id, path, record, user_id)
        if existing is not None:
            await self.manager.cancel_medication(existing)
        await self.store.delete(path)
        logger.info("Deleted medication %s", item_id, extra=log_extra(item_id=item_id, user_id=user_id))
        return True

    async def medications_due_on(self, user_id: str, day: date | None = None) -> list[RecurringItem]:
        if day is None:
            day = self.manager.now().date()
        return due_items(await self.list_medications(user_id), day)

    # -- appointments --------------------------------------------------

    async def list_appointments(self, user_id: str) -> list[PunctualItem]:
        items: list[PunctualItem] = []
        for document in await self.store.query(appointments_path(user_id), order_by="startTime"):
            item = _decode(PunctualItem, document.id, document.path, document.data, user_id)
            if item is not None:
                items.append(item)
        return items

    async def get_appointment(self, user_id: str, item_id: str) -> PunctualItem | None:
        record = await self.store.get(f"{appointments_path(user_id)}/{item_id}")
        return None if record is None else PunctualItem.from_record(item_id, record)

    async def save_appointment(self, user_id: str, item: PunctualItem) -> ScheduleOutcome:
        if not item.id:
            item = item.model_copy(update={"id": new_record_id()})
        path = f"{appointments_path(user_id)}/{item.id}"

        record = await self.store.get(path)
        existing = None if record is None else _decode(PunctualItem, item.id, path, record, user_id)
        if existing is not None:
            await self.manager.cancel_appointment(existing)

        await self.store.set(path, item.model_copy(update={"notification_id": None}).to_record())
        outcome = await self._schedule(item, user_id)
        await self.store.update(path, {"notificationId": outcome.item.notification_id})
        return outcome

    async def delete_appointment(self, user_id: str, item_id: str) -> bool:
        path = f"{appointments_path(user_id)}/{item_id}"
        record = await self.store.get(path)
        if record is None:
            return False
        existing = _decode(PunctualItem, item_id, path, record, user_id)
        if existing is not None:
            await self.manager.cancel_appointment(existing)
        await self.store.delete(path)
        logger.info("Deleted appointment %s", item_id, extra=log_extra(item_id=item_id, user_id=user_id))
        return True

    # -- intake logs and today views -----------------------------------

    async def log_intake(self, user_id: str, log: IntakeLog) -> IntakeLog:
        if not log.id:
            log = log.model_copy(update={"id": new_record_id()})
        await self.store.set(f"{intake_logs_path(user_id)}/{log.id}", log.to_record())
        return log

    async def intake_logs_for_day(self, user_id: str, day: date) -> list[IntakeLog]:
        logs: list[IntakeLog] = []
        for document in await self.store.query(intake_logs_path(user_id), order_by="loggedAt"):
            try:
                log = IntakeLog.from_record(document.id, document.data)
            except _MALFORMED_RECORD_ERRORS as exc:
                logger.warning("Skipping malformed intake log %s: %s", document.path, exc)
                continue
            if log.logged_at.date() == day:
                logs.append(log)
        return logs

    async def adherence_today(
        self, user_id: str, now: datetime | None = None
    ) -> dict[str, dict[TimeSlot, AdherenceStatus]]:
        """Status of every slot of every medication due today, keyed by medication id."""
        if now is None:
            now = self.manager.now()
        slot_times = await self.settings.slot_times(user_id)
        logs = await self.intake_logs_for_day(user_id, now.date())
        return {
            item.id: statuses_for_item(item, logs, slot_times, now)
            for item in await self.medications_due_on(user_id, now.date())
        }

    async def today_schedule(self, user_id: str, now: datetime | None = None) -> list[ScheduleEntry]:
        if now is None:
            now = self.manager.now()
        slot_times = await self.settings.slot_times(user_id)
        return build_today_schedule(
            await self.list_medications(user_id),
            await self.list_appointments(user_id),
            slot_times,
            now,
        )

    async def resume(self, user_id: str) -> list[ScheduleOutcome]:
        """Re-derive every reminder on app start or resume and persist the new handles."""
        medications = await self.list_medications(user_id)
        appointments = await self.list_appointments(user_id)
        outcomes = await self.manager.reschedule_all([*medications, *appointments], user_id)

        for outcome in outcomes:
            item = outcome.item
            update: dict[str, Any]
            if isinstance(item, RecurringItem):
                path = f"{medications_path(user_id)}/{item.id}"
                update = {"notificationIds": dict(item.notification_ids)}
            else:
                path = f"{appointments_path(user_id)}/{item.id}"
                update = {"notificationId": item.notification_id}
            await self.store.update(path, update)
        return outcomes


def build_service(
    config: Config,
    capability: NotificationCapability,
    *,
    clock: Callable[[], datetime] | None = None,
) -> CareScheduleService:
    """Wire store, settings and lifecycle manager from ``config``."""
    if config.database_url:
        store: DocumentStore = PostgresDocumentStore(config.database_url, config.documents_table)
    else:
        logger.warning("DATABASE_URL not set; using in-memory document store")
        store = InMemoryDocumentStore()
    settings = DocumentSettingsProvider(store)
    manager = NotificationLifecycleManager(
        capability,
        settings,
        clock=clock,
        horizon_days=config.search_horizon_days,
        reminder_floor_minutes=config.reminder_floor_minutes,
    )
    return CareScheduleService(store, manager, settings)
