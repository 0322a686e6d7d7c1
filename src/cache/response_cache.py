# src/cache/response_cache.py — v1
"""Time-bounded response cache over any BaseCacheStore.

An entry is valid while ``now - created_at < ttl``; from ``ttl`` on it is a
miss. Expired entries are left in place on read and removed by
``clear_expired``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from chatpipe.cache.base_cache_store import BaseCacheStore
from chatpipe.cache.models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResponseCache:
    """Fingerprint → response text, with time-based expiry."""

    def __init__(
        self,
        store: BaseCacheStore,
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock = utcnow,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self._store = store
        self._ttl = ttl
        self._clock = clock

    @property
    def store(self) -> BaseCacheStore:
        return self._store

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def is_expired(self, entry: CacheEntry, now: datetime | None = None) -> bool:
        now = now or self._clock()
        return now - entry.created_at >= self._ttl

    async def get(self, key: str) -> str | None:
        """Cached response text, or None on miss, expiry or unreadable entry."""
        entry = await self._store.get(key)
        if entry is None:
            logger.debug("LLM cache MISS for key %s", key[:16])
            return None
        if self.is_expired(entry):
            logger.debug("LLM cache EXPIRED for key %s", key[:16])
            return None
        logger.debug("LLM cache HIT for key %s", key[:16])
        return entry.response

    async def put(self, key: str, response: str) -> None:
        """Store or overwrite the response for ``key``, stamped now."""
        await self._store.put(
            CacheEntry(cache_key=key, response=response, created_at=self._clock())
        )

    async def evict(self, key: str) -> None:
        await self._store.delete(key)

    async def clear_expired(self) -> int:
        """Delete all entries at or past the TTL; return how many were removed."""
        removed = await self._store.delete_created_before(self._clock() - self._ttl)
        if removed:
            logger.info("Removed %d expired LLM cache entries", removed)
        return removed

    async def clear(self) -> int:
        """Delete every entry regardless of age."""
        removed = await self._store.clear()
        logger.info("Cleared %d LLM cache entries", removed)
        return removed
