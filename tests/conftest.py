# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides conversation builders, a fixed clock, isolated settings and an
httpx MockTransport-backed endpoint. No network access — all I/O is mocked.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable, Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from chatpipe.config.settings import Settings
from chatpipe.llm.models import ConversationMessage

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

PHOTO_A = "data:image/jpeg;base64,QUFB"
PHOTO_B = "data:image/jpeg;base64,QkJC"


# === HELPERS ===


def user(content: str, *photos: str, msg_id: str | None = None) -> ConversationMessage:
    return ConversationMessage(
        id=msg_id or f"u-{content[:8]}",
        role="user",
        content=content,
        photos=tuple(photos) or None,
        timestamp=T0,
    )


def assistant(content: str, msg_id: str | None = None) -> ConversationMessage:
    return ConversationMessage(
        id=msg_id or f"a-{content[:8]}",
        role="assistant",
        content=content,
        timestamp=T0,
    )


def completion_body(content: str = "Hello!", prompt: int = 10, completion: int = 5) -> dict[str, Any]:
    """Non-streaming chat-completions JSON body."""
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": prompt + completion,
        },
    }


def sse_delta(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}) + "\n"


def sse_usage(prompt: int, completion: int) -> str:
    usage = {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
    }
    return "data: " + json.dumps({"choices": [], "usage": usage}) + "\n"


SSE_DONE = "data: [DONE]\n"


async def byte_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class FakeClock:
    """Settable clock for TTL tests."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


Handler = Callable[[httpx.Request], Any]


class ScriptedEndpoint:
    """MockTransport handler replaying a scripted list of responses.

    Each script item is either an httpx.Response, an exception to raise,
    or a callable taking the request. Every request is recorded.
    """

    def __init__(self, script: list[Any]) -> None:
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.script:
            raise AssertionError("endpoint called more times than scripted")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            result = item(request)
            if hasattr(result, "__await__"):
                result = await result
            return result
        return item

    @property
    def calls(self) -> int:
        return len(self.requests)

    def body(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


# === FIXTURES ===


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from .env and the user's home directory."""
    return Settings(
        _env_file=None,
        llm_endpoint="https://llm.test/v1/chat/completions",
        llm_api_key="sk-test",
        llm_backoff_base_s=0.0,
        cache_backend="memory",
        cache_root=tmp_path / "cache",
        usage_ledger_path=None,
    )


@pytest.fixture
def conversation() -> list[ConversationMessage]:
    """Three-turn conversation ending with a photo-bearing user turn."""
    return [
        user("What is this mushroom?", PHOTO_A, msg_id="m1"),
        assistant("It could be a chanterelle.", msg_id="m2"),
        user("Here is the underside.", PHOTO_B, msg_id="m3"),
    ]
