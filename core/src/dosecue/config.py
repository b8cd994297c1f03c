import os
from dataclasses import dataclass


def _positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return max(1, int(raw))
    except ValueError:
        return default


@dataclass(frozen=True)
class Config:
    database_url: str | None = None
    log_format: str = "json"
    search_horizon_days: int = 400
    reminder_floor_minutes: int = 60
    documents_table: str = "documents"

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            database_url=os.environ.get("DATABASE_URL") or None,
            log_format=os.environ.get("DOSECUE_LOG_FORMAT", "json"),
            search_horizon_days=_positive_int("DOSECUE_SEARCH_HORIZON_DAYS", 400),
            reminder_floor_minutes=_positive_int("DOSECUE_REMINDER_FLOOR_MINUTES", 60),
            documents_table=os.environ.get("DOSECUE_DOCUMENTS_TABLE", "documents"),
        )
