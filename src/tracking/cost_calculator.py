# src/tracking/cost_calculator.py — v2
"""Estimated USD cost of an LLM call from its token counts."""

from __future__ import annotations

from chatpipe.config.settings import Settings
from chatpipe.tracking.models import ModelPricing

# Endpoint list price per 1M tokens
DEFAULT_PRICING = ModelPricing(prompt_price_per_1m=3.0, completion_price_per_1m=15.0)


def estimate_cost(
    prompt_tokens: int,
    completion_tokens: int,
    pricing: ModelPricing | None = None,
) -> float:
    """Compute estimated cost for one call in USD."""
    p = pricing or DEFAULT_PRICING
    return (
        prompt_tokens * p.prompt_price_per_1m / 1_000_000
        + completion_tokens * p.completion_price_per_1m / 1_000_000
    )


def pricing_from_settings(settings: Settings) -> ModelPricing:
    return ModelPricing(
        prompt_price_per_1m=settings.prompt_cost_per_1m,
        completion_price_per_1m=settings.completion_cost_per_1m,
    )
