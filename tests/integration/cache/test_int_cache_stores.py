# tests/integration/cache/test_int_cache_stores.py — v3
"""Integration tests for cache backends: memory + JSON + SQLite behind ResponseCache.

No external services required.
Coverage targets: cache_factory.py, json_store.py, sqlite_store.py,
memory_store.py, response_cache.py, fingerprint.py
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from chatpipe.cache.cache_factory import create_cache_store
from chatpipe.cache.fingerprint import build_cache_key
from chatpipe.cache.response_cache import ResponseCache
from chatpipe.config.settings import Settings
from chatpipe.llm.message_builder import build_messages

from conftest import PHOTO_A, assistant, user

BACKENDS = ["memory", "json", "sqlite"]


@pytest.fixture(params=BACKENDS)
def response_cache(request, tmp_path: Path, fake_clock):
    settings = Settings(_env_file=None, cache_backend=request.param, cache_root=tmp_path)
    store = create_cache_store(settings)
    yield ResponseCache(store, ttl=timedelta(days=settings.cache_ttl_days), clock=fake_clock)
    store.close()


class TestCacheBackends:

    @pytest.mark.asyncio
    async def test_conversation_roundtrip(self, response_cache):
        history = [user("What is this?", PHOTO_A), assistant("A chanterelle."), user("Sure?")]
        key = build_cache_key(build_messages("sys", history))
        await response_cache.put(key, "Yes, note the false gills.")
        assert await response_cache.get(key) == "Yes, note the false gills."

    @pytest.mark.asyncio
    async def test_ttl_boundary(self, response_cache, fake_clock):
        await response_cache.put("llm-a", "a")
        fake_clock.advance(days=7, seconds=-1)
        assert await response_cache.get("llm-a") == "a"
        fake_clock.advance(seconds=1)
        assert await response_cache.get("llm-a") is None

    @pytest.mark.asyncio
    async def test_sweep_keeps_fresh(self, response_cache, fake_clock):
        await response_cache.put("llm-old", "old")
        fake_clock.advance(days=8)
        await response_cache.put("llm-fresh", "fresh")
        assert await response_cache.clear_expired() == 1
        assert await response_cache.clear_expired() == 0
        assert await response_cache.get("llm-fresh") == "fresh"
        assert await response_cache.store.count() == 1

    @pytest.mark.asyncio
    async def test_last_writer_wins(self, response_cache):
        await response_cache.put("llm-k", "one")
        await response_cache.put("llm-k", "two")
        assert await response_cache.get("llm-k") == "two"
        assert await response_cache.store.count() == 1


class TestPersistentBackends:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", ["json", "sqlite"])
    async def test_survives_reopen(self, tmp_path: Path, backend: str):
        settings = Settings(_env_file=None, cache_backend=backend, cache_root=tmp_path)
        first = create_cache_store(settings)
        await ResponseCache(first).put("llm-keep", "kept")
        first.close()

        second = create_cache_store(settings)
        try:
            assert await ResponseCache(second).get("llm-keep") == "kept"
        finally:
            second.close()
