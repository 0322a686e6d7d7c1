# src/cache/json_store.py — v3
"""JSON file-based cache store (CACHE_BACKEND=json).

One file per entry under CACHE_ROOT, named after the cache key.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from chatpipe.cache.base_cache_store import BaseCacheStore
from chatpipe.cache.models import CacheEntry

logger = logging.getLogger(__name__)


class JsonCacheStore(BaseCacheStore):
    """File-based cache store using JSON files."""

    def __init__(self, cache_root: Path | str) -> None:
        self._root = Path(cache_root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    async def get(self, key: str) -> CacheEntry | None:
        path = self._entry_path(key)
        if not path.exists():
            return None
        return self._read(path)

    async def put(self, entry: CacheEntry) -> None:
        path = self._entry_path(entry.cache_key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(entry.model_dump_json(), encoding="utf-8")
        tmp.replace(path)

    async def delete(self, key: str) -> None:
        self._entry_path(key).unlink(missing_ok=True)

    async def list_entries(self) -> list[CacheEntry]:
        entries: list[CacheEntry] = []
        for path in sorted(self._root.glob("*.json")):
            entry = self._read(path)
            if entry is not None:
                entries.append(entry)
        return entries

    async def delete_created_before(self, cutoff: datetime) -> int:
        """Delete entries at or before ``cutoff``, plus any file that no longer parses."""
        removed = 0
        for path in self._root.glob("*.json"):
            entry = self._read(path)
            if entry is None or entry.created_at <= cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        return removed

    async def clear(self) -> int:
        removed = 0
        for path in self._root.glob("*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            return CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, json.JSONDecodeError) as e:
            logger.warning("Failed to read cache entry %s: %s", path.name, e)
            return None

    def _entry_path(self, key: str) -> Path:
        # Keys are "llm-<hex>"; anything else is reduced to a safe file name.
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        return self._root / f"{safe}.json"
