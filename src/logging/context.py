# src/logging/context.py — v2
"""Contextual logging support — attach session_id, call_id and cache_key to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per conversation and per call.
_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)
_call_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "call_id", default=None
)
_cache_key: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "cache_key", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    session_id: str | None = None
    call_id: str | None = None
    cache_key: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        session_id=_session_id.get(),
        call_id=_call_id.get(),
        cache_key=_cache_key.get(),
    )


def set_session_context(session_id: str) -> None:
    """Set conversation-level context (called once per conversation)."""
    _session_id.set(session_id)


def set_call_context(call_id: str, cache_key: str | None = None) -> None:
    """Set call-level context (called per pipeline send)."""
    _call_id.set(call_id)
    _cache_key.set(cache_key)


def clear_context() -> None:
    """Reset all context variables."""
    _session_id.set(None)
    _call_id.set(None)
    _cache_key.set(None)
