# src/cache/sqlite_store.py — v3
"""SQLite-based cache store (CACHE_BACKEND=sqlite, default).

Uses stdlib sqlite3. ``created_at`` is stored as epoch seconds and indexed
so expiry sweeps are a single DELETE.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from chatpipe.cache.base_cache_store import BaseCacheStore
from chatpipe.cache.models import CacheEntry

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS llm_cache (
    cache_key TEXT PRIMARY KEY,
    response TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_llm_cache_created_at ON llm_cache(created_at);
"""


class SqliteCacheStore(BaseCacheStore):
    """SQLite-backed cache store."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def get(self, key: str) -> CacheEntry | None:
        row = self._conn.execute(
            "SELECT cache_key, response, created_at FROM llm_cache WHERE cache_key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        return _row_to_entry(row)

    async def put(self, entry: CacheEntry) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO llm_cache (cache_key, response, created_at)
               VALUES (?, ?, ?)""",
            (entry.cache_key, entry.response, entry.created_at.timestamp()),
        )
        self._conn.commit()

    async def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM llm_cache WHERE cache_key = ?", (key,))
        self._conn.commit()

    async def list_entries(self) -> list[CacheEntry]:
        cursor = self._conn.execute(
            "SELECT cache_key, response, created_at FROM llm_cache ORDER BY created_at"
        )
        entries: list[CacheEntry] = []
        for row in cursor.fetchall():
            entry = _row_to_entry(row)
            if entry is not None:
                entries.append(entry)
        return entries

    async def delete_created_before(self, cutoff: datetime) -> int:
        cursor = self._conn.execute(
            "DELETE FROM llm_cache WHERE created_at <= ? "
            "OR typeof(created_at) NOT IN ('real', 'integer')",
            (cutoff.timestamp(),),
        )
        self._conn.commit()
        return cursor.rowcount

    async def clear(self) -> int:
        cursor = self._conn.execute("DELETE FROM llm_cache")
        self._conn.commit()
        return cursor.rowcount

    async def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM llm_cache").fetchone()[0]

    def close(self) -> None:
        self._conn.close()


def _row_to_entry(row: tuple) -> CacheEntry | None:
    key, response, created_at = row
    try:
        return CacheEntry(
            cache_key=key,
            response=response,
            created_at=datetime.fromtimestamp(float(created_at), tz=timezone.utc),
        )
    except (TypeError, ValueError, OverflowError) as e:
        logger.warning("Failed to deserialize cache entry %s: %s", key, e)
        return None
