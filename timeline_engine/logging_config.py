"""Logging setup driven by ``Config``.

``TIMELINE_LOG_FORMAT`` picks JSON lines (default) or plain text and
``TIMELINE_LOG_LEVEL`` the root level. Both formats carry ``timeline_*``
extras such as the user id, day and counts.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from timeline_engine.config import Config

EXTRA_PREFIX = "timeline_"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def record_context(record: logging.LogRecord) -> dict:
    return {
        key[len(EXTRA_PREFIX):]: value for key, value in record.__dict__.items() if key.startswith(EXTRA_PREFIX)
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, extras grouped under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = record_context(record)
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        return f"{line} [{pairs}]"


def setup_logging(config: Optional[Config] = None) -> None:
    """Replace the root handlers with a single stderr handler configured from ``config``."""

    config = config or Config()
    level = getattr(logging, config.log_level)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if config.log_format == "json" else TextFormatter())
    root.addHandler(handler)
