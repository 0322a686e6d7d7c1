# src/cache/cache_factory.py — v4
"""Factory for cache store instantiation."""

from __future__ import annotations

from chatpipe.cache.base_cache_store import BaseCacheStore
from chatpipe.config.settings import Settings


class UnsupportedCacheBackendError(ValueError):
    """Raised when CACHE_BACKEND names no known store."""


def create_cache_store(settings: Settings | None = None) -> BaseCacheStore:
    """Instantiate the configured cache backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseCacheStore implementation.
    """
    if settings is None or settings.cache_backend == "memory":
        from chatpipe.cache.memory_store import MemoryCacheStore
        return MemoryCacheStore()

    backend = settings.cache_backend
    if backend == "json":
        from chatpipe.cache.json_store import JsonCacheStore
        return JsonCacheStore(cache_root=settings.cache_root)

    if backend == "sqlite":
        from chatpipe.cache.sqlite_store import SqliteCacheStore
        return SqliteCacheStore(db_path=settings.cache_root / "llm_cache.db")

    raise UnsupportedCacheBackendError(f"Unsupported cache backend: {backend!r}")
