"""Tests for the persistence-and-scheduling orchestration."""

from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from dosecue.adherence import AdherenceStatus
from dosecue.config import Config
from dosecue.lifecycle import NotificationLifecycleManager
from dosecue.models import IntakeLog, PunctualItem, RecurringItem
from dosecue.notifications import InMemoryNotificationCapability
from dosecue.service import (
    CareScheduleService,
    appointments_path,
    build_service,
    intake_logs_path,
    medications_path,
)
from dosecue.settings import DocumentSettingsProvider, medication_settings_path, notification_settings_path
from dosecue.store import InMemoryDocumentStore, PostgresDocumentStore

USER = "user-1"


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def service(store, capability, clock) -> CareScheduleService:
    clock.now = datetime(2024, 1, 1, 9, 0)
    manager = NotificationLifecycleManager(capability, DocumentSettingsProvider(store), clock=clock)
    return CareScheduleService(store, manager)


def _medication(**overrides) -> RecurringItem:
    defaults = dict(
        id="med-1",
        name="Metformin",
        dosage="500",
        frequency="Daily",
        start_date=date(2024, 1, 1),
        time_slots=("morning", "evening"),
    )
    defaults.update(overrides)
    return RecurringItem(**defaults)


def _appointment(**overrides) -> PunctualItem:
    defaults = dict(
        id="appt-1",
        start_time=datetime(2024, 1, 1, 15, 0),
        end_time=datetime(2024, 1, 1, 16, 0),
        provider="City Clinic",
    )
    defaults.update(overrides)
    return PunctualItem(**defaults)


class TestMedications:
    @pytest.mark.asyncio
    async def test_save_persists_record_with_handles(self, service, store, capability):
        outcome = await service.save_medication(USER, _medication())

        assert outcome.status == "scheduled"
        record = await store.get(f"{medications_path(USER)}/med-1")
        assert record["name"] == "Metformin"
        assert record["notificationIds"] == dict(outcome.item.notification_ids)
        assert set(record["notificationIds"].values()) == set(capability.scheduled)

    @pytest.mark.asyncio
    async def test_save_assigns_id(self, service):
        outcome = await service.save_medication(USER, _medication(id=""))
        assert outcome.item.id
        assert await service.get_medication(USER, outcome.item.id) is not None

    @pytest.mark.asyncio
    async def test_edit_replaces_previous_handles(self, service, capability):
        first = await service.save_medication(USER, _medication())
        edited = _medication(dosage="850", time_slots=("morning",))

        second = await service.save_medication(USER, edited)

        assert list(capability.scheduled) == list(second.item.notification_ids.values())
        assert set(first.item.notification_ids.values()) <= set(capability.cancelled)
        stored = await service.get_medication(USER, "med-1")
        assert stored.dosage == "850"
        assert set(stored.notification_ids) == {"morning"}

    @pytest.mark.asyncio
    async def test_record_saved_when_scheduling_fails(self, service, store, capability):
        capability.schedule = AsyncMock(side_effect=RuntimeError("alarm service down"))

        outcome = await service.save_medication(USER, _medication())

        assert outcome.status == "failed"
        record = await store.get(f"{medications_path(USER)}/med-1")
        assert record["name"] == "Metformin"
        assert record["notificationIds"] == {}

    @pytest.mark.asyncio
    async def test_disabled_setting_read_from_store(self, service, store, capability):
        await store.set(notification_settings_path(USER), {"enabled": False, "reminderTime": 30})
        outcome = await service.save_medication(USER, _medication())
        assert outcome.status == "disabled"
        assert capability.scheduled == {}

    @pytest.mark.asyncio
    async def test_slot_times_read_from_store(self, service, store, capability):
        await store.set(medication_settings_path(USER), {"eveningTime": "20:30"})
        outcome = await service.save_medication(USER, _medication(time_slots=("evening",)))
        fire_at, _ = capability.scheduled[outcome.item.notification_ids["evening"]]
        assert fire_at == datetime(2024, 1, 1, 20, 30)

    @pytest.mark.asyncio
    async def test_delete_cancels_and_removes(self, service, capability):
        await service.save_medication(USER, _medication())
        assert await service.delete_medication(USER, "med-1") is True
        assert capability.scheduled == {}
        assert await service.get_medication(USER, "med-1") is None
        assert await service.delete_medication(USER, "med-1") is False

    @pytest.mark.asyncio
    async def test_list_skips_malformed_records(self, service, store):
        await service.save_medication(USER, _medication())
        await store.set(
            f"{medications_path(USER)}/broken",
            {"name": "Bad", "startDate": "2024-02-01", "endDate": "2024-01-01"},
        )
        assert [item.id for item in await service.list_medications(USER)] == ["med-1"]

    @pytest.mark.asyncio
    async def test_medications_due_on(self, service):
        await service.save_medication(USER, _medication(id="daily"))
        await service.save_medication(USER, _medication(id="eod", frequency="Every Other Day"))
        due = await service.medications_due_on(USER, date(2024, 1, 2))
        assert [item.id for item in due] == ["daily"]


class TestAppointments:
    @pytest.mark.asyncio
    async def test_save_and_delete(self, service, store, capability):
        outcome = await service.save_appointment(USER, _appointment())
        record = await store.get(f"{appointments_path(USER)}/appt-1")
        assert record["notificationId"] == outcome.item.notification_id
        assert outcome.item.notification_id in capability.scheduled

        assert await service.delete_appointment(USER, "appt-1") is True
        assert capability.scheduled == {}
        assert await service.get_appointment(USER, "appt-1") is None

    @pytest.mark.asyncio
    async def test_list_ordered_by_start(self, service):
        later = _appointment(
            id="a-later",
            start_time=datetime(2024, 1, 3, 9, 0),
            end_time=datetime(2024, 1, 3, 10, 0),
        )
        await service.save_appointment(USER, later)
        await service.save_appointment(USER, _appointment(id="z-sooner"))
        assert [item.id for item in await service.list_appointments(USER)] == ["z-sooner", "a-later"]


class TestMalformedRecords:
    @pytest.mark.asyncio
    async def test_save_replaces_malformed_medication(self, service, store, capability):
        path = f"{medications_path(USER)}/med-1"
        await store.set(path, {"name": "x", "startDate": "garbage"})

        outcome = await service.save_medication(USER, _medication())

        assert outcome.status == "scheduled"
        stored = await service.get_medication(USER, "med-1")
        assert stored.name == "Metformin"
        assert set(stored.notification_ids.values()) == set(capability.scheduled)

    @pytest.mark.asyncio
    async def test_delete_removes_malformed_medication(self, service, store):
        path = f"{medications_path(USER)}/med-1"
        await store.set(path, {"name": "x", "startDate": "garbage"})

        assert await service.delete_medication(USER, "med-1") is True
        assert await store.get(path) is None

    @pytest.mark.asyncio
    async def test_save_replaces_malformed_appointment(self, service, store, capability):
        path = f"{appointments_path(USER)}/appt-1"
        await store.set(path, {"startTime": "2024-01-01T15:00:00", "travelTime": "soon"})

        outcome = await service.save_appointment(USER, _appointment())

        assert outcome.status == "scheduled"
        record = await store.get(path)
        assert record["travelTime"] == 0
        assert record["notificationId"] in capability.scheduled

    @pytest.mark.asyncio
    async def test_delete_removes_malformed_appointment(self, service, store):
        path = f"{appointments_path(USER)}/appt-1"
        await store.set(path, {"endTime": "2024-01-01T16:00:00"})

        assert await service.delete_appointment(USER, "appt-1") is True
        assert await store.get(path) is None


class TestViews:
    @pytest.mark.asyncio
    async def test_adherence_today(self, service, clock):
        await service.save_medication(USER, _medication(time_slots=("morning", "afternoon", "evening")))
        await service.log_intake(
            USER,
            IntakeLog(item_id="med-1", slot="morning", logged_at=datetime(2024, 1, 1, 8, 10)),
        )
        await service.log_intake(
            USER,
            IntakeLog(item_id="med-1", slot="evening", logged_at=datetime(2023, 12, 31, 18, 5)),
        )

        statuses = await service.adherence_today(USER, datetime(2024, 1, 1, 13, 0))

        assert statuses == {
            "med-1": {
                "morning": AdherenceStatus.TAKEN,
                "afternoon": AdherenceStatus.LATE,
                "evening": AdherenceStatus.PENDING,
            }
        }

    @pytest.mark.asyncio
    async def test_log_intake_assigns_id(self, service, store):
        log = await service.log_intake(
            USER, IntakeLog(item_id="med-1", slot="morning", logged_at=datetime(2024, 1, 1, 8, 0))
        )
        assert log.id
        record = await store.get(f"{intake_logs_path(USER)}/{log.id}")
        assert record["medicationId"] == "med-1"

    @pytest.mark.asyncio
    async def test_today_schedule(self, service):
        await service.save_medication(USER, _medication())
        await service.save_appointment(USER, _appointment())

        entries = await service.today_schedule(USER, datetime(2024, 1, 1, 9, 0))

        assert [(entry.kind, entry.start) for entry in entries] == [
            ("appointment", datetime(2024, 1, 1, 15, 0)),
            ("medication", datetime(2024, 1, 1, 18, 0)),
        ]


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_rebuilds_handles_once(self, service, store, capability):
        await service.save_medication(USER, _medication())
        await service.save_appointment(USER, _appointment())

        await service.resume(USER)
        outcomes = await service.resume(USER)

        assert all(outcome.ok for outcome in outcomes)
        assert len(capability.scheduled) == 3
        record = await store.get(f"{medications_path(USER)}/med-1")
        assert set(record["notificationIds"].values()) <= set(capability.scheduled)

    @pytest.mark.asyncio
    async def test_resume_after_restart_cancels_carried_handles(self, store, capability, clock):
        clock.now = datetime(2024, 1, 1, 9, 0)
        first = CareScheduleService(
            store, NotificationLifecycleManager(capability, DocumentSettingsProvider(store), clock=clock)
        )
        await first.save_medication(USER, _medication())

        clock.advance(hours=12)
        restarted = CareScheduleService(
            store, NotificationLifecycleManager(capability, DocumentSettingsProvider(store), clock=clock)
        )
        outcomes = await restarted.resume(USER)

        assert len(capability.scheduled) == 2
        fire_times = sorted(fire_at for fire_at, _ in capability.scheduled.values())
        assert fire_times == [datetime(2024, 1, 2, 8, 0), datetime(2024, 1, 2, 18, 0)]
        assert outcomes[0].item.notification_ids.keys() == {"morning", "evening"}


class TestBuildService:
    def test_in_memory_without_database_url(self):
        service = build_service(Config(), InMemoryNotificationCapability())
        assert isinstance(service.store, InMemoryDocumentStore)
        assert isinstance(service.settings, DocumentSettingsProvider)

    def test_postgres_with_database_url(self):
        config = Config(
            database_url="postgresql://localhost/dosecue",
            search_horizon_days=30,
            reminder_floor_minutes=45,
            documents_table="care_documents",
        )
        service = build_service(config, InMemoryNotificationCapability(), clock=lambda: datetime(2024, 1, 1))

        assert isinstance(service.store, PostgresDocumentStore)
        assert service.store.table == "care_documents"
        assert service.manager.horizon_days == 30
        assert service.manager.reminder_floor_minutes == 45
        assert service.manager.now() == datetime(2024, 1, 1)

    def test_defaults_to_wall_clock(self):
        service = build_service(Config(), InMemoryNotificationCapability())
        before = datetime.now()
        assert service.manager.now() - before < timedelta(seconds=5)
