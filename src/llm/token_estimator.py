# src/llm/token_estimator.py — v1
"""Character-ratio token estimation used for context admission control.

No tokenizer dependency: estimates are proportional to character count.
Swap in a precise tokenizer by passing any object with ``estimate(text)``
to the message builder.
"""

from __future__ import annotations

import math
from typing import Protocol

from chatpipe.llm.models import ImagePart, TextPart, WireMessage

DEFAULT_CHARS_PER_TOKEN = 3.5

# Flat per-image charge; image tokens are billed separately from text.
IMAGE_PART_TOKENS = 1000


class TokenEstimator(Protocol):
    """Anything that maps text to a non-negative token count."""

    def estimate(self, text: str) -> int: ...


class CharRatioEstimator:
    """ceil(len(text) / chars_per_token). Monotonic in length, deterministic."""

    def __init__(self, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be > 0")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)


_default = CharRatioEstimator()


def estimate_tokens(text: str) -> int:
    """Estimate tokens for a text using the default ratio."""
    return _default.estimate(text)


def estimate_message_tokens(
    message: WireMessage, estimator: TokenEstimator | None = None
) -> int:
    """Estimate tokens for one wire message, text and image parts included."""
    est = estimator or _default
    if isinstance(message.content, str):
        return est.estimate(message.content)
    tokens = 0
    for part in message.content:
        if isinstance(part, TextPart):
            tokens += est.estimate(part.text)
        elif isinstance(part, ImagePart):
            tokens += IMAGE_PART_TOKENS
    return tokens
