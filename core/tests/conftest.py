"""Shared fixtures: a controllable clock, an in-memory platform and a manager."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from dosecue.lifecycle import NotificationLifecycleManager
from dosecue.metrics import reset_metrics
from dosecue.notifications import InMemoryNotificationCapability
from dosecue.settings import StaticSettingsProvider


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def fresh_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 0, 0))


@pytest.fixture
def capability() -> InMemoryNotificationCapability:
    return InMemoryNotificationCapability()


@pytest.fixture
def settings() -> StaticSettingsProvider:
    return StaticSettingsProvider()


@pytest.fixture
def manager(capability, settings, clock) -> NotificationLifecycleManager:
    return NotificationLifecycleManager(capability, settings, clock=clock)
