"""Structured logging for the scheduling core.

``setup_logging`` is called once by the host application; library modules
only use ``logging.getLogger(__name__)`` and attach context through
``log_extra``. Format is "json" (default) or "text", see DOSECUE_LOG_FORMAT.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

_EXTRA_PREFIX = "dosecue_"


def log_extra(**fields: Any) -> dict[str, Any]:
    """Build an ``extra=`` mapping; ``None`` values are left out."""
    return {f"{_EXTRA_PREFIX}{key}": value for key, value in fields.items() if value is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with every ``dosecue_*`` extra lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
        }
        entry.update(
            {key: value for key, value in record.__dict__.items() if key.startswith(_EXTRA_PREFIX)}
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plaintext lines followed by ``key=value`` pairs for the dosecue extras."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = " ".join(
            f"{key[len(_EXTRA_PREFIX):]}={value}"
            for key, value in sorted(record.__dict__.items())
            if key.startswith(_EXTRA_PREFIX)
        )
        return f"{line} [{context}]" if context else line


def setup_logging(log_format: str, level: int = logging.INFO) -> None:
    """Install a single stderr handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else ContextTextFormatter())
    root.addHandler(handler)
