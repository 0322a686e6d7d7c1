# src/llm/pipeline.py — v2
"""Conversation pipeline: bounded messages → cache → live call → ledger.

send() is cache-first. stream() always goes live, since the caller wants
incremental deltas, and writes its result back to the cache afterwards.

Concurrent send() calls for the same fingerprint share one in-flight
request when ``coalesce_inflight`` is on, so a double submit is billed once.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta

from chatpipe.cache.cache_factory import create_cache_store
from chatpipe.cache.fingerprint import build_cache_key
from chatpipe.cache.response_cache import ResponseCache
from chatpipe.config.settings import Settings
from chatpipe.llm.api_client import ChunkCallback, LLMApiClient
from chatpipe.llm.message_builder import build_messages
from chatpipe.llm.models import ConversationMessage, LLMRequest, LLMResponse, Usage, WireMessage
from chatpipe.llm.retry import RetryConfig
from chatpipe.llm.token_estimator import TokenEstimator
from chatpipe.logging.context import set_call_context, set_session_context
from chatpipe.tracking.cost_calculator import pricing_from_settings
from chatpipe.tracking.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


class BudgetExceededError(Exception):
    """Monthly spend reached the configured limit; no call was made."""

    def __init__(self, spent_usd: float, limit_usd: float) -> None:
        self.spent_usd = spent_usd
        self.limit_usd = limit_usd
        super().__init__(
            f"Monthly LLM budget exceeded: ${spent_usd:.4f} spent of ${limit_usd:.2f}"
        )


@dataclass(frozen=True)
class ChatResult:
    """Outcome of one pipeline turn."""

    content: str
    cached: bool
    cache_key: str
    usage: Usage
    model: str | None = None


class ChatPipeline:
    """Ties message building, caching, the API client and the usage ledger together."""

    def __init__(
        self,
        client: LLMApiClient,
        settings: Settings,
        cache: ResponseCache | None = None,
        ledger: UsageLedger | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._cache = cache
        self._ledger = ledger
        self._estimator = estimator
        self._inflight: dict[str, asyncio.Future[ChatResult]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> ChatPipeline:
        """Wire a pipeline from configuration alone."""
        client = LLMApiClient(
            endpoint=settings.llm_endpoint,
            api_key=settings.credential,
            timeout_s=settings.llm_timeout_s,
            retry=RetryConfig(
                max_retries=settings.llm_max_retries,
                base_delay_s=settings.llm_backoff_base_s,
                retry_transport=settings.llm_retry_transport,
            ),
        )
        cache = None
        if settings.cache_enabled:
            cache = ResponseCache(
                create_cache_store(settings),
                ttl=timedelta(days=settings.cache_ttl_days),
            )
        ledger = UsageLedger(settings.usage_ledger_path, pricing_from_settings(settings))
        return cls(client, settings, cache=cache, ledger=ledger)

    @property
    def cache(self) -> ResponseCache | None:
        return self._cache

    @property
    def ledger(self) -> UsageLedger | None:
        return self._ledger

    def prepare(
        self, system_prompt: str, history: Sequence[ConversationMessage]
    ) -> list[WireMessage]:
        """Bounded wire messages for this turn."""
        return build_messages(
            system_prompt,
            history,
            max_tokens=self._settings.context_max_tokens,
            estimator=self._estimator,
        )

    def select_model(self, messages: Sequence[WireMessage]) -> str:
        """Vision model when the outgoing turn carries images, text model otherwise."""
        if any(m.has_images for m in messages):
            return self._settings.llm_vision_model
        return self._settings.llm_model

    async def send(
        self,
        system_prompt: str,
        history: Sequence[ConversationMessage],
        session_id: str | None = None,
    ) -> ChatResult:
        """One non-streaming turn, answered from cache when possible.

        ``session_id`` tags this turn's log records with the conversation.

        Raises:
            BudgetExceededError: Monthly spend is at or over the limit.
            LLMCallError: The endpoint call failed.
        """
        messages = self.prepare(system_prompt, history)
        key = build_cache_key(messages)
        _begin_call(key, session_id)

        if self._cache is not None:
            cached = await self._cache.get(key)
            if cached:
                return ChatResult(content=cached, cached=True, cache_key=key, usage=Usage())

        if not self._settings.coalesce_inflight:
            return await self._call_live(messages, key)

        pending = self._inflight.get(key)
        if pending is not None:
            logger.info("Joining in-flight LLM call for key %s", key[:16])
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._call_live(messages, key))
        self._inflight[key] = task
        task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def stream(
        self,
        system_prompt: str,
        history: Sequence[ConversationMessage],
        on_chunk: ChunkCallback | None = None,
        session_id: str | None = None,
    ) -> ChatResult:
        """One streaming turn; ``on_chunk`` receives deltas in arrival order.

        Raises:
            BudgetExceededError: Monthly spend is at or over the limit.
            LLMCallError: The endpoint call failed.
        """
        messages = self.prepare(system_prompt, history)
        key = build_cache_key(messages)
        _begin_call(key, session_id)
        self._check_budget()

        request = self._request(messages)
        response = await self._client.stream(request).collect(on_chunk)
        return await self._finish(response, key, request.model)

    async def sweep_cache(self) -> int:
        """Drop expired cache entries; 0 when caching is disabled."""
        if self._cache is None:
            return 0
        return await self._cache.clear_expired()

    async def aclose(self) -> None:
        await self._client.aclose()
        if self._cache is not None:
            self._cache.store.close()

    async def _call_live(self, messages: list[WireMessage], key: str) -> ChatResult:
        self._check_budget()
        request = self._request(messages)
        response = await self._client.call(request)
        return await self._finish(response, key, request.model)

    def _request(self, messages: list[WireMessage]) -> LLMRequest:
        return LLMRequest(
            model=self.select_model(messages),
            messages=messages,
            max_tokens=self._settings.llm_max_tokens,
            temperature=self._settings.llm_temperature,
        )

    def _check_budget(self) -> None:
        if self._ledger is None:
            return
        limit = self._settings.budget_limit_usd
        if not self._ledger.is_within_budget(limit):
            raise BudgetExceededError(self._ledger.monthly_spend(), limit)

    async def _finish(self, response: LLMResponse, key: str, model: str) -> ChatResult:
        content = response.content
        if self._ledger is not None:
            self._ledger.record(response.usage)
        if self._cache is not None and content:
            await self._cache.put(key, content)
        return ChatResult(
            content=content, cached=False, cache_key=key, usage=response.usage, model=model,
        )


def _begin_call(key: str, session_id: str | None) -> None:
    if session_id is not None:
        set_session_context(session_id)
    set_call_context(uuid.uuid4().hex[:12], key)
