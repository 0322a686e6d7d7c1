# src/cache/base_cache_store.py — v2
"""Abstract cache store interface.

Stores are key/value tables of CacheEntry; the expiry policy lives in
ResponseCache. Writes are last-writer-wins upserts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from chatpipe.cache.models import CacheEntry


class BaseCacheStore(ABC):
    """Unified interface for cache storage backends."""

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        """Retrieve an entry; None when absent or unreadable."""

    @abstractmethod
    async def put(self, entry: CacheEntry) -> None:
        """Insert or overwrite the entry for ``entry.cache_key``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove an entry. Deleting a missing key is a no-op."""

    @abstractmethod
    async def list_entries(self) -> list[CacheEntry]:
        """All readable entries."""

    async def delete_created_before(self, cutoff: datetime) -> int:
        """Delete entries with ``created_at <= cutoff``; return how many."""
        expired = [e.cache_key for e in await self.list_entries() if e.created_at <= cutoff]
        for key in expired:
            await self.delete(key)
        return len(expired)

    async def clear(self) -> int:
        """Delete every entry; return how many."""
        keys = [e.cache_key for e in await self.list_entries()]
        for key in keys:
            await self.delete(key)
        return len(keys)

    async def count(self) -> int:
        return len(await self.list_entries())

    def close(self) -> None:
        """Release backend resources."""
