# tests/integration/llm/test_int_llm_pipeline.py — v1
"""Integration tests for the LLM pipeline, end to end.

Covers: llm/pipeline.py wired through from_settings-equivalent parts:
        message_builder, fingerprint, sqlite cache, api_client, retry,
        stream_assembler, usage_ledger.

No network required: the endpoint is an httpx MockTransport.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import httpx
import pytest

from chatpipe.cache.cache_factory import create_cache_store
from chatpipe.cache.response_cache import ResponseCache
from chatpipe.llm.api_client import LLMApiClient
from chatpipe.llm.errors import LLMCallError, LLMErrorKind
from chatpipe.llm.pipeline import ChatPipeline
from chatpipe.llm.retry import RetryConfig
from chatpipe.tracking.cost_calculator import pricing_from_settings
from chatpipe.tracking.usage_ledger import UsageLedger

from conftest import (
    SSE_DONE,
    ScriptedEndpoint,
    assistant,
    byte_chunks,
    completion_body,
    sse_delta,
    sse_usage,
    user,
)

SYSTEM = "You are a field guide for mushrooms."


@pytest.fixture
def persistent_settings(settings, tmp_path: Path):
    return settings.model_copy(update={
        "cache_backend": "sqlite",
        "cache_root": tmp_path / "cache",
        "usage_ledger_path": tmp_path / "usage.jsonl",
    })


def _wire(settings, endpoint: ScriptedEndpoint, clock, sleep) -> ChatPipeline:
    client = LLMApiClient(
        settings.llm_endpoint,
        api_key=settings.credential,
        timeout_s=settings.llm_timeout_s,
        retry=RetryConfig(max_retries=settings.llm_max_retries, base_delay_s=1.0),
        http_client=endpoint.client(),
        sleep=sleep,
    )
    cache = ResponseCache(
        create_cache_store(settings),
        ttl=timedelta(days=settings.cache_ttl_days),
        clock=clock,
    )
    ledger = UsageLedger(settings.usage_ledger_path, pricing_from_settings(settings))
    return ChatPipeline(client, settings, cache=cache, ledger=ledger)


class TestConversationFlow:

    @pytest.mark.asyncio
    async def test_multi_turn_with_retries_cache_and_ledger(
        self, persistent_settings, fake_clock, recording_sleep, tmp_path
    ):
        endpoint = ScriptedEndpoint([
            httpx.Response(503),
            httpx.Response(429),
            httpx.Response(200, json=completion_body("Probably a porcini.", 1200, 40)),
            httpx.Response(200, json=completion_body("Check the pores.", 1500, 30)),
        ])
        pipeline = _wire(persistent_settings, endpoint, fake_clock, recording_sleep)
        history = [user("What did I find?", "data:image/jpeg;base64,QUFB")]

        first = await pipeline.send(SYSTEM, history)
        assert first.content == "Probably a porcini."
        assert first.model == persistent_settings.llm_vision_model
        assert recording_sleep.delays == [1.0, 2.0]

        history += [assistant(first.content), user("How do I confirm?")]
        second = await pipeline.send(SYSTEM, history)
        assert second.content == "Check the pores."
        body = endpoint.body()
        # The earlier photo is dropped once a newer user turn exists.
        assert all(isinstance(m["content"], str) for m in body["messages"])
        assert body["model"] == persistent_settings.llm_model

        replay = await pipeline.send(SYSTEM, history)
        assert replay.cached is True
        assert endpoint.calls == 4
        await pipeline.aclose()

        lines = (tmp_path / "usage.jsonl").read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["prompt_tokens"] for line in lines] == [1200, 1500]

    @pytest.mark.asyncio
    async def test_cache_survives_restart(self, persistent_settings, fake_clock, recording_sleep):
        history = [user("Is a fly agaric edible?")]
        endpoint = ScriptedEndpoint([httpx.Response(200, json=completion_body("No."))])
        pipeline = _wire(persistent_settings, endpoint, fake_clock, recording_sleep)
        await pipeline.send(SYSTEM, history)
        await pipeline.aclose()

        restarted = _wire(persistent_settings, ScriptedEndpoint([]), fake_clock, recording_sleep)
        try:
            result = await restarted.send(SYSTEM, history)
            assert result.cached is True
            assert result.content == "No."
            assert len(restarted.ledger.records) == 1
        finally:
            await restarted.aclose()

    @pytest.mark.asyncio
    async def test_streamed_reply_then_sweep(self, persistent_settings, fake_clock, recording_sleep):
        body = (
            sse_delta("Trompette ")
            + sse_delta("des morts")
            + sse_usage(80, 5)
            + SSE_DONE
        ).encode("utf-8")
        endpoint = ScriptedEndpoint([
            httpx.Response(200, content=byte_chunks([body[i:i + 7] for i in range(0, len(body), 7)])),
        ])
        pipeline = _wire(persistent_settings, endpoint, fake_clock, recording_sleep)
        history = [user("Name this black funnel.")]
        chunks: list[str] = []
        try:
            result = await pipeline.stream(SYSTEM, history, on_chunk=chunks.append)
            assert "".join(chunks) == "Trompette des morts"
            assert result.usage.total_tokens == 85

            fake_clock.advance(days=7)
            assert await pipeline.sweep_cache() == 1
            assert await pipeline.cache.get(result.cache_key) is None
        finally:
            await pipeline.aclose()


class TestFailures:

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, persistent_settings, fake_clock, recording_sleep):
        endpoint = ScriptedEndpoint([httpx.Response(500)] * 4)
        pipeline = _wire(persistent_settings, endpoint, fake_clock, recording_sleep)
        try:
            with pytest.raises(LLMCallError) as exc_info:
                await pipeline.send(SYSTEM, [user("hello")])
            err = exc_info.value
            assert err.kind is LLMErrorKind.SERVER
            assert err.status == 500
            assert err.attempts == 4
            assert recording_sleep.delays == [1.0, 2.0, 4.0]
            assert await pipeline.cache.store.count() == 0
            assert pipeline.ledger.records == []
        finally:
            await pipeline.aclose()

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self, persistent_settings, fake_clock, recording_sleep):
        endpoint = ScriptedEndpoint([httpx.Response(401)])
        pipeline = _wire(persistent_settings, endpoint, fake_clock, recording_sleep)
        try:
            with pytest.raises(LLMCallError) as exc_info:
                await pipeline.send(SYSTEM, [user("hello")])
            assert exc_info.value.kind is LLMErrorKind.AUTH
            assert recording_sleep.delays == []
        finally:
            await pipeline.aclose()
