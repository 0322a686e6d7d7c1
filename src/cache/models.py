# src/cache/models.py — v2
"""Cache domain model: one stored response per conversation fingerprint."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, field_validator


class CacheEntry(BaseModel):
    """Raw response text keyed by a wire-message fingerprint."""

    cache_key: str
    response: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:  # noqa: N805
        """Naive timestamps are stored as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v
