# src/cache/memory_store.py — v1
"""In-process cache store (CACHE_BACKEND=memory). Lost on exit."""

from __future__ import annotations

from chatpipe.cache.base_cache_store import BaseCacheStore
from chatpipe.cache.models import CacheEntry


class MemoryCacheStore(BaseCacheStore):
    """Dict-backed store, mostly for tests and short-lived sessions."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def put(self, entry: CacheEntry) -> None:
        self._entries[entry.cache_key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def list_entries(self) -> list[CacheEntry]:
        return list(self._entries.values())
