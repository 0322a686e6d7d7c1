# src/logging/logger.py — v3
"""Handler and formatter setup for the ``chatpipe`` logger tree.

Context (session, call, cache key) is stamped onto each record by
ContextFilter at emit time. Formatters only read record attributes, so a
record formatted later or on another thread keeps the context it was
logged under.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from chatpipe.logging.context import get_context

_ROOT = "chatpipe"
_CONTEXT_FIELDS = ("session_id", "call_id", "cache_key")

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


class ContextFilter(logging.Filter):
    """Copy the active LogContext onto records that don't already carry it."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_context()
        for field in _CONTEXT_FIELDS:
            if getattr(record, field, None) is None:
                setattr(record, field, getattr(ctx, field))
        return True


def record_context(record: logging.LogRecord) -> dict[str, str]:
    """Context fields present on ``record``."""
    context: dict[str, str] = {}
    for field in _CONTEXT_FIELDS:
        value = getattr(record, field, None)
        if value is not None:
            context[field] = value
    return context


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = record_context(record)
        if context:
            entry["context"] = context
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """``2026-03-01 12:00:00 [INFO    ] chatpipe.llm.retry [session] (call): message``"""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s [%(levelname)-8s] %(name)s%(context_tag)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        tag = ""
        session_id = getattr(record, "session_id", None)
        call_id = getattr(record, "call_id", None)
        if session_id:
            tag += f" [{session_id}]"
        if call_id:
            tag += f" ({call_id})"
        record.context_tag = tag
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 5,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Configure the ``chatpipe`` logger; safe to call again to reconfigure.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: "json" or "text".
        log_file: Optional log file, rotated by size.
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of rotated files to keep.
        quiet: Logger names capped at WARNING.
    """
    root_logger = logging.getLogger(_ROOT)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for old in list(root_logger.handlers):
        root_logger.removeHandler(old)
        old.close()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    # stdout carries streamed completions in the CLI
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        from chatpipe.logging.handlers import create_rotating_handler

        handlers.append(create_rotating_handler(log_file, rotation=rotation, retention=retention))

    context_filter = ContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
