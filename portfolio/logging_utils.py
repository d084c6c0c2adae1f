from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys
from typing import Optional

from .config import settings

SERVICE_NAME = "portfolio-api"

# `extra=` keys copied into each JSON line when present.
CONTEXT_KEYS = (
    "event",
    "ip",
    "reason",
    "path",
    "status",
    "retry_after_ms",
    "duration_ms",
    "swept",
)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, stamped with the record's own creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in CONTEXT_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        # Enum reasons and similar values fall back to str().
        return json.dumps(entry, ensure_ascii=True, default=str)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    root = logging.getLogger()
    if root.handlers:
        return root

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
    root.addHandler(handler)
    return root
