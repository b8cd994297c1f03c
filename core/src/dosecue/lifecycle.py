"""Notification lifecycle for medications and appointments.

Each medication slot and each appointment owns at most one live handle.
Replacing a handle is cancel-then-create under a per-key lock, so a late
cancel can never hit the handle that replaced it. When the create step fails
the key ends unscheduled; no stale handle is kept.

Failures are reported through ``ScheduleOutcome`` and never abort a batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Union

from .errors import NoUpcomingOccurrence, SchedulingFailed, StaleHandleCancelAttempt
from .logging import log_extra
from .metrics import (
    record_cancelled,
    record_failed,
    record_scheduled,
    record_skipped,
    record_stale_cancel,
)
from .models import (
    DailySlotTimes,
    PunctualItem,
    RecurringItem,
    TimeSlot,
    UserNotificationPreferences,
    align_clock,
)
from .notifications import (
    NotificationCapability,
    NotificationPayload,
    appointment_payload,
    medication_payload,
)
from .occurrence import DEFAULT_HORIZON_DAYS, next_due_instant
from .reminder_policy import REMINDER_FLOOR_MINUTES, reminder_fire_time
from .settings import SettingsProvider

logger = logging.getLogger(__name__)

ScheduleStatus = Literal["scheduled", "skipped", "disabled", "failed"]

CareItem = Union[RecurringItem, PunctualItem]

# (item id, slot); appointments use slot None.
HandleKey = tuple[str, TimeSlot | None]


@dataclass(frozen=True)
class ScheduleOutcome:
    item: CareItem
    status: ScheduleStatus
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


def unscheduled(item: CareItem) -> CareItem:
    """Copy of ``item`` without any notification handle."""
    if isinstance(item, RecurringItem):
        return item.model_copy(update={"notification_ids": {}})
    return item.model_copy(update={"notification_id": None})


class NotificationLifecycleManager:
    def __init__(
        self,
        capability: NotificationCapability,
        settings: SettingsProvider,
        *,
        clock: Callable[[], datetime] | None = None,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        reminder_floor_minutes: int = REMINDER_FLOOR_MINUTES,
    ) -> None:
        self.capability = capability
        self.settings = settings
        self._clock = clock or datetime.now
        self.horizon_days = horizon_days
        self.reminder_floor_minutes = reminder_floor_minutes
        # Lock per key with its holder and waiter count; dropped when the count reaches zero.
        self._locks: dict[HandleKey, tuple[asyncio.Lock, int]] = {}
        # Last handle issued per key in this process, cancelled along with
        # whatever handle the caller's copy of the item carries.
        self._live: dict[HandleKey, str] = {}

    def now(self) -> datetime:
        return self._clock()

    def live_handles(self) -> dict[HandleKey, str]:
        return dict(self._live)

    @asynccontextmanager
    async def _lock(self, key: HandleKey) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def locked_keys(self) -> list[HandleKey]:
        return list(self._locks)

    async def _cancel_handle(self, key: HandleKey, handle: str) -> None:
        try:
            await self.capability.cancel(handle)
        except Exception as exc:
            stale = StaleHandleCancelAttempt(handle, exc)
            record_stale_cancel()
            logger.debug(
                "Ignoring cancel failure: %s",
                stale,
                extra=log_extra(item_id=key[0], slot=key[1], handle=handle),
            )
        else:
            record_cancelled()

    async def _release(self, key: HandleKey, carried: str | None) -> None:
        """Cancel the carried handle and the tracked one. Caller holds the key lock."""
        tracked = self._live.pop(key, None)
        for handle in dict.fromkeys(h for h in (carried, tracked) if h):
            await self._cancel_handle(key, handle)

    async def _create(self, key: HandleKey, fire_at: datetime, payload: NotificationPayload) -> str:
        try:
            handle = await self.capability.schedule(fire_at, payload)
        except Exception as exc:
            raise SchedulingFailed(key[0], key[1], exc) from exc
        self._live[key] = handle
        logger.info(
            "Scheduled notification for %s at %s",
            key[0] if key[1] is None else f"{key[0]}/{key[1]}",
            fire_at.isoformat(),
            extra=log_extra(item_id=key[0], slot=key[1], handle=handle, fire_at=fire_at.isoformat()),
        )
        return handle

    # -- medications ---------------------------------------------------

    async def schedule_medication(
        self,
        item: RecurringItem,
        user_id: str,
        slot_times: DailySlotTimes | None = None,
        *,
        prefs: UserNotificationPreferences | None = None,
    ) -> ScheduleOutcome:
        """Replace every slot's handle with one for the slot's next due instant."""
        if prefs is None:
            prefs = await self.settings.notification_preferences(user_id)
        if slot_times is None:
            slot_times = await self.settings.slot_times(user_id)

        # Slots dropped by an edit lose their handles.
        for slot, handle in item.notification_ids.items():
            if slot not in item.time_slots:
                key = (item.id, slot)
                async with self._lock(key):
                    await self._release(key, handle)

        if not prefs.enabled:
            for slot in item.time_slots:
                key = (item.id, slot)
                async with self._lock(key):
                    await self._release(key, item.notification_ids.get(slot))
            logger.info(
                "Notifications disabled; medication %s left unscheduled",
                item.id,
                extra=log_extra(item_id=item.id, user_id=user_id),
            )
            return ScheduleOutcome(
                item.model_copy(update={"notification_ids": {}}),
                "disabled",
                "notifications disabled",
            )

        handles: dict[TimeSlot, str] = {}
        skipped: list[str] = []
        failures: list[str] = []
        for slot in item.time_slots:
            key = (item.id, slot)
            async with self._lock(key):
                await self._release(key, item.notification_ids.get(slot))
                now = self._clock()
                try:
                    fire_at = next_due_instant(
                        item, now, slot_times, slot=slot, horizon_days=self.horizon_days
                    )
                except NoUpcomingOccurrence as exc:
                    record_skipped("medication")
                    skipped.append(f"{slot}: {exc.reason}")
                    continue
                try:
                    handles[slot] = await self._create(key, fire_at, medication_payload(item, slot))
                except SchedulingFailed as exc:
                    record_failed("medication")
                    failures.append(str(exc))
                    logger.warning(
                        "%s",
                        exc,
                        exc_info=exc.cause,
                        extra=log_extra(item_id=item.id, slot=slot, user_id=user_id),
                    )
                    continue
                record_scheduled("medication")

        updated = item.model_copy(update={"notification_ids": handles})
        if failures:
            return ScheduleOutcome(updated, "failed", "; ".join(failures))
        if not handles:
            return ScheduleOutcome(updated, "skipped", "; ".join(skipped) or "no time slots")
        return ScheduleOutcome(updated, "scheduled", "; ".join(skipped) or None)

    async def cancel_medication(self, item: RecurringItem) -> RecurringItem:
        """Cancel every handle of ``item``; unknown handles count as cancelled."""
        slots = dict.fromkeys([*item.notification_ids, *item.time_slots])
        for slot in slots:
            key = (item.id, slot)
            async with self._lock(key):
                await self._release(key, item.notification_ids.get(slot))
        return item.model_copy(update={"notification_ids": {}})

    # -- appointments --------------------------------------------------

    async def schedule_appointment(
        self,
        item: PunctualItem,
        user_id: str,
        *,
        prefs: UserNotificationPreferences | None = None,
    ) -> ScheduleOutcome:
        """Replace the appointment's handle with one ``effective lead`` minutes before it starts.

        A reminder time that has already passed leaves the appointment
        without a handle.
        """
        if prefs is None:
            prefs = await self.settings.notification_preferences(user_id)

        key: HandleKey = (item.id, None)
        async with self._lock(key):
            await self._release(key, item.notification_id)
            cleared = item.model_copy(update={"notification_id": None})

            if not prefs.enabled:
                logger.info(
                    "Notifications disabled; appointment %s left unscheduled",
                    item.id,
                    extra=log_extra(item_id=item.id, user_id=user_id),
                )
                return ScheduleOutcome(cleared, "disabled", "notifications disabled")

            fire_at = reminder_fire_time(item, prefs, floor_minutes=self.reminder_floor_minutes)
            now = align_clock(self._clock(), fire_at)
            if fire_at <= now:
                record_skipped("appointment")
                logger.info(
                    "Reminder time for appointment %s already passed",
                    item.id,
                    extra=log_extra(item_id=item.id, fire_at=fire_at.isoformat()),
                )
                return ScheduleOutcome(cleared, "skipped", "reminder time already passed")

            try:
                handle = await self._create(key, fire_at, appointment_payload(item))
            except SchedulingFailed as exc:
                record_failed("appointment")
                logger.warning(
                    "%s", exc, exc_info=exc.cause, extra=log_extra(item_id=item.id, user_id=user_id)
                )
                return ScheduleOutcome(cleared, "failed", str(exc))

        record_scheduled("appointment")
        return ScheduleOutcome(item.model_copy(update={"notification_id": handle}), "scheduled")

    async def cancel_appointment(self, item: PunctualItem) -> PunctualItem:
        key: HandleKey = (item.id, None)
        async with self._lock(key):
            await self._release(key, item.notification_id)
        return item.model_copy(update={"notification_id": None})

    # -- batches -------------------------------------------------------

    async def _guarded(self, item: CareItem, operation: Awaitable[ScheduleOutcome]) -> ScheduleOutcome:
        try:
            return await operation
        except Exception as exc:
            logger.exception("Scheduling %s failed", item.id, extra=log_extra(item_id=item.id))
            record_failed("medication" if isinstance(item, RecurringItem) else "appointment")
            return ScheduleOutcome(unscheduled(item), "failed", str(exc))

    async def _gather(
        self, jobs: Sequence[tuple[CareItem, Awaitable[ScheduleOutcome]]]
    ) -> list[ScheduleOutcome]:
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(self._guarded(item, operation)) for item, operation in jobs]
        return [task.result() for task in tasks]

    async def schedule_all_medication_notifications(
        self,
        items: Iterable[RecurringItem],
        user_id: str,
        slot_times: DailySlotTimes | None = None,
    ) -> list[ScheduleOutcome]:
        return await self.reschedule_all(items, user_id, slot_times)

    async def schedule_all_appointment_notifications(
        self,
        items: Iterable[PunctualItem],
        user_id: str,
    ) -> list[ScheduleOutcome]:
        return await self.reschedule_all(items, user_id)

    async def reschedule_all(
        self,
        items: Iterable[CareItem],
        user_id: str,
        slot_times: DailySlotTimes | None = None,
    ) -> list[ScheduleOutcome]:
        """Re-derive every item's handle(s); safe to repeat on every app start or resume.

        Outcomes are returned in input order.
        """
        items = list(items)
        prefs = await self.settings.notification_preferences(user_id)
        if slot_times is None and any(isinstance(item, RecurringItem) for item in items):
            slot_times = await self.settings.slot_times(user_id)

        jobs: list[tuple[CareItem, Awaitable[ScheduleOutcome]]] = []
        for item in items:
            if isinstance(item, RecurringItem):
                jobs.append((item, self.schedule_medication(item, user_id, slot_times, prefs=prefs)))
            else:
                jobs.append((item, self.schedule_appointment(item, user_id, prefs=prefs)))
        outcomes = await self._gather(jobs)

        failed = sum(1 for outcome in outcomes if not outcome.ok)
        logger.info(
            "Rescheduled %d item(s), %d failed",
            len(outcomes),
            failed,
            extra=log_extra(user_id=user_id),
        )
        return outcomes
