# src/llm/api_client.py — v2
"""HTTP client for an OpenAI-compatible chat-completions endpoint.

The only place that talks to the network. Supports plain JSON calls and
SSE streaming, both behind the same retry policy (see llm/retry.py).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
from pydantic import ValidationError

from chatpipe.llm.errors import LLMCallError, LLMErrorKind
from chatpipe.llm.models import LLMRequest, LLMResponse
from chatpipe.llm.retry import RetryConfig, Sleep, send_with_retry
from chatpipe.llm.stream_assembler import StreamAssembler

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0

ChunkCallback = Callable[[str], Any]


def build_headers(api_key: str | None) -> dict[str, str]:
    """JSON headers, plus a bearer token only when one is available."""
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _check_timeout(timeout_s: float) -> float:
    if timeout_s <= 0:
        raise ValueError(f"timeout_s must be > 0, got {timeout_s!r}")
    return timeout_s


class LLMApiClient:
    """Chat-completions client with retry, backoff and per-attempt timeout.

    A missing api_key is not an error: a relay in front of the endpoint
    may inject a server-held credential.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retry: RetryConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._timeout_s = _check_timeout(timeout_s)
        self._retry = retry or RetryConfig()
        self._sleep = sleep
        self._owns_client = http_client is None
        # Timeouts are enforced per attempt by asyncio, not by httpx.
        self._http = http_client or httpx.AsyncClient(timeout=None)

    @property
    def retry_config(self) -> RetryConfig:
        return self._retry

    async def call(
        self,
        request: LLMRequest,
        *,
        api_key: str | None = None,
        endpoint: str | None = None,
        timeout_s: float | None = None,
    ) -> LLMResponse:
        """Non-streaming completion.

        Raises:
            LLMCallError: Terminal HTTP status, exhausted retries, transport
                failure or an undecodable response body.
        """
        payload = request.model_copy(update={"stream": None}).to_payload()
        url = endpoint or self._endpoint
        headers = build_headers(api_key or self._api_key)

        async def send() -> httpx.Response:
            return await self._http.post(url, json=payload, headers=headers)

        response, attempts = await send_with_retry(
            send, self._retry, self._window(timeout_s), sleep=self._sleep,
        )
        try:
            result = LLMResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise LLMCallError(
                f"Undecodable LLM response body: {e.error_count()} validation error(s)",
                kind=LLMErrorKind.TRANSPORT,
                status=response.status_code,
                retryable=False,
                attempts=attempts,
            ) from e
        logger.debug(
            "LLM call ok after %d attempt(s): %d prompt / %d completion tokens",
            attempts, result.usage.prompt_tokens, result.usage.completion_tokens,
        )
        return result

    def stream(
        self,
        request: LLMRequest,
        *,
        api_key: str | None = None,
        endpoint: str | None = None,
        timeout_s: float | None = None,
    ) -> LLMStream:
        """Streaming completion. Nothing is sent until the stream is iterated."""
        payload = request.model_copy(update={"stream": True}).to_payload()
        url = endpoint or self._endpoint
        headers = build_headers(api_key or self._api_key)
        window = self._window(timeout_s)

        async def open_stream() -> tuple[httpx.Response, int, float]:
            loop = asyncio.get_running_loop()
            attempt_started = loop.time()

            async def send() -> httpx.Response:
                nonlocal attempt_started
                attempt_started = loop.time()
                req = self._http.build_request("POST", url, json=payload, headers=headers)
                return await self._http.send(req, stream=True)

            response, attempts = await send_with_retry(
                send, self._retry, window, sleep=self._sleep,
            )
            return response, attempts, attempt_started + window

        return LLMStream(open_stream)

    def _window(self, timeout_s: float | None) -> float:
        if timeout_s is None:
            return self._timeout_s
        return _check_timeout(timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> LLMApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class LLMStream:
    """Single-pass async iterator of content deltas.

    Iterate to receive deltas in arrival order; once exhausted,
    ``response`` holds the assembled LLMResponse. A caller that stops early
    must call ``aclose()`` (or use ``async with``) to release the connection.
    """

    def __init__(
        self, open_stream: Callable[[], Awaitable[tuple[httpx.Response, int, float]]]
    ) -> None:
        self._open = open_stream
        self._gen: AsyncGenerator[str, None] | None = None
        self.response: LLMResponse | None = None
        self.attempts = 0

    def __aiter__(self) -> AsyncIterator[str]:
        if self._gen is not None:
            raise RuntimeError("LLMStream can only be iterated once")
        self._gen = self._iterate()
        return self._gen

    async def collect(self, on_chunk: ChunkCallback | None = None) -> LLMResponse:
        """Drain the stream, passing each delta to ``on_chunk`` before the next read."""
        async with self:
            async for delta in self:
                if on_chunk is not None:
                    result = on_chunk(delta)
                    if inspect.isawaitable(result):
                        await result
        if self.response is None:
            raise RuntimeError("LLMStream closed before completion")
        return self.response

    async def aclose(self) -> None:
        """Stop reading and release the HTTP response. Safe to call more than once."""
        if self._gen is not None:
            await self._gen.aclose()

    async def __aenter__(self) -> LLMStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _iterate(self) -> AsyncGenerator[str, None]:
        response, self.attempts, deadline = await self._open()
        loop = asyncio.get_running_loop()
        assembler = StreamAssembler()
        chunks = response.aiter_bytes()
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    chunk = await asyncio.wait_for(anext(chunks), timeout=remaining)
                except StopAsyncIteration:
                    break
                for delta in assembler.feed(chunk):
                    yield delta
            for delta in assembler.close():
                yield delta
        except (httpx.TransportError, asyncio.TimeoutError) as e:
            detail = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e) or type(e).__name__
            raise LLMCallError(
                f"LLM stream interrupted: {detail}",
                kind=LLMErrorKind.TRANSPORT,
                status=response.status_code,
                retryable=True,
                attempts=self.attempts,
            ) from e
        finally:
            await chunks.aclose()
            await response.aclose()

        self.response = assembler.response()
        logger.debug(
            "LLM stream complete: %d chars, %d total tokens",
            len(assembler.content), assembler.usage.total_tokens,
        )
