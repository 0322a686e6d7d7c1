# src/llm/errors.py — v1
"""Error classification for chat-completion calls.

A single exception type tagged with an LLMErrorKind; callers branch on
``err.kind`` rather than on a subclass hierarchy.
"""

from __future__ import annotations

from enum import Enum


class LLMErrorKind(str, Enum):
    AUTH = "auth"  # 401 / 403
    CLIENT = "client"  # any other 4xx except 429
    RATE_LIMITED = "rate_limited"  # 429
    SERVER = "server"  # 5xx
    TRANSPORT = "transport"  # network failure, timeout, undecodable body


class LLMCallError(Exception):
    """A chat-completion call failed terminally."""

    def __init__(
        self,
        message: str,
        kind: LLMErrorKind,
        status: int | None = None,
        retryable: bool = False,
        attempts: int = 1,
    ) -> None:
        self.kind = kind
        self.status = status
        self.retryable = retryable
        self.attempts = attempts
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"LLMCallError(kind={self.kind.value!r}, status={self.status!r}, "
            f"retryable={self.retryable!r}, attempts={self.attempts!r})"
        )


def is_retryable_status(status: int) -> bool:
    """429 and 5xx may succeed on a later attempt."""
    return status == 429 or status >= 500


def classify_status(status: int) -> LLMErrorKind:
    """Map a non-2xx HTTP status to an error kind."""
    if status in (401, 403):
        return LLMErrorKind.AUTH
    if status == 429:
        return LLMErrorKind.RATE_LIMITED
    if status >= 500:
        return LLMErrorKind.SERVER
    return LLMErrorKind.CLIENT


def error_for_status(status: int, reason: str = "", attempts: int = 1) -> LLMCallError:
    """Build the terminal error for a non-2xx response."""
    text = f"LLM API error: {status} {reason}".rstrip()
    return LLMCallError(
        text,
        kind=classify_status(status),
        status=status,
        retryable=is_retryable_status(status),
        attempts=attempts,
    )
