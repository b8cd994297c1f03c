from __future__ import annotations

import pytest

from dosecue.config import Config

_VARS = (
    "DATABASE_URL",
    "DOSECUE_LOG_FORMAT",
    "DOSECUE_SEARCH_HORIZON_DAYS",
    "DOSECUE_REMINDER_FLOOR_MINUTES",
    "DOSECUE_DOCUMENTS_TABLE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_config_defaults() -> None:
    cfg = Config.from_env()
    assert cfg == Config()
    assert cfg.database_url is None
    assert cfg.log_format == "json"
    assert cfg.search_horizon_days == 400
    assert cfg.reminder_floor_minutes == 60


def test_config_reads_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://app@db/care")
    monkeypatch.setenv("DOSECUE_LOG_FORMAT", "text")
    monkeypatch.setenv("DOSECUE_SEARCH_HORIZON_DAYS", "90")
    monkeypatch.setenv("DOSECUE_REMINDER_FLOOR_MINUTES", "30")
    monkeypatch.setenv("DOSECUE_DOCUMENTS_TABLE", "care_documents")

    cfg = Config.from_env()
    assert cfg.database_url == "postgresql://app@db/care"
    assert cfg.log_format == "text"
    assert cfg.search_horizon_days == 90
    assert cfg.reminder_floor_minutes == 30
    assert cfg.documents_table == "care_documents"


def test_empty_database_url_means_in_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "")
    assert Config.from_env().database_url is None


@pytest.mark.parametrize("raw, expected", [("abc", 400), ("0", 1), ("-5", 1)])
def test_invalid_horizon(monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
    monkeypatch.setenv("DOSECUE_SEARCH_HORIZON_DAYS", raw)
    assert Config.from_env().search_horizon_days == expected
