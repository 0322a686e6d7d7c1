# src/llm/retry.py — v3
"""Attempt loop with exponential backoff and a per-attempt timeout.

Only 429 and 5xx responses are retried. Other 4xx responses end the loop
immediately. Transport failures (network error, timeout) end the loop
unless RetryConfig.retry_transport is set: a timed-out request may still
have been processed and billed upstream.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from chatpipe.llm.errors import LLMCallError, LLMErrorKind, error_for_status, is_retryable_status

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy, injected into the client at construction."""

    max_retries: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    retry_transport: bool = False

    def delay_for(self, attempt: int) -> float:
        """Delay before ``attempt`` (0-based). Attempt 0 has none."""
        if attempt <= 0:
            return 0.0
        return self.base_delay_s * (self.backoff_factor ** (attempt - 1))


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    config: RetryConfig,
    timeout_s: float,
    sleep: Sleep = asyncio.sleep,
) -> tuple[httpx.Response, int]:
    """Run ``send`` until it yields a non-retryable response or retries run out.

    Each attempt gets a fresh ``timeout_s`` window; hitting it cancels only
    that attempt. ``send`` must return a response whose body has not been
    read yet when streaming, so a failed attempt can be closed cheaply.

    Returns:
        The final response (2xx) and the number of attempts made.

    Raises:
        LLMCallError: On a terminal non-2xx status, after retries are
            exhausted, or on a transport failure.
    """
    if timeout_s <= 0:
        raise ValueError(f"timeout_s must be > 0, got {timeout_s!r}")
    attempt = 0
    while True:
        delay = config.delay_for(attempt)
        if delay > 0:
            await sleep(delay)

        try:
            response = await asyncio.wait_for(send(), timeout=timeout_s)
        except (httpx.TransportError, asyncio.TimeoutError) as e:
            detail = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e) or type(e).__name__
            if config.retry_transport and attempt < config.max_retries:
                logger.warning(
                    "LLM transport failure (attempt %d/%d): %s, retrying",
                    attempt + 1, config.max_retries + 1, detail,
                )
                attempt += 1
                continue
            raise LLMCallError(
                f"LLM request failed: {detail}",
                kind=LLMErrorKind.TRANSPORT,
                retryable=True,
                attempts=attempt + 1,
            ) from e

        if response.is_success:
            return response, attempt + 1

        status = response.status_code
        await response.aclose()

        if not is_retryable_status(status) or attempt >= config.max_retries:
            err = error_for_status(status, response.reason_phrase, attempts=attempt + 1)
            logger.error("LLM call failed after %d attempt(s): %s", attempt + 1, err)
            raise err

        logger.warning(
            "LLM endpoint returned %d (attempt %d/%d), retrying in %.1fs",
            status, attempt + 1, config.max_retries + 1, config.delay_for(attempt + 1),
        )
        attempt += 1
