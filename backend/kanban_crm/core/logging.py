"""Logging configuration with text and JSON renderers for structured extras."""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import UTC, datetime
from typing import Any

from kanban_crm.core.config import settings

_HANDLER_NAME = "kanban_crm"

# Attributes present on every LogRecord; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    },
)


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class TextFormatter(logging.Formatter):
    """Human-readable formatter that appends structured extras as key=value pairs."""

    def __init__(self, *, use_utc: bool = False) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)s %(name)s %(message)s")
        if use_utc:
            self.converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _record_extras(record)
        if extras:
            rendered = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
            # Keep the traceback (if any) on the lines that follow the message.
            head, sep, tail = line.partition("\n")
            line = f"{head} {rendered}{sep}{tail}"
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per record; extras are merged at the top level."""

    def __init__(self, *, use_utc: bool = False) -> None:
        super().__init__()
        self._use_utc = use_utc

    def format(self, record: logging.LogRecord) -> str:
        if self._use_utc:
            timestamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat()
        else:
            timestamp = datetime.fromtimestamp(record.created).astimezone().isoformat()
        payload: dict[str, Any] = {
            "time": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter() -> logging.Formatter:
    if settings.log_format.strip().lower() == "json":
        return JsonFormatter(use_utc=settings.log_use_utc)
    return TextFormatter(use_utc=settings.log_use_utc)


def configure_logging() -> None:
    """Install the application handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    for handler in root.handlers:
        if handler.get_name() == _HANDLER_NAME:
            handler.setFormatter(_build_formatter())
            return
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(_build_formatter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; configuration is applied once at app startup."""
    return logging.getLogger(name)
