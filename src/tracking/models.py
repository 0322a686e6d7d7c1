# src/tracking/models.py — v2
"""Tracking domain models: UsageRecord and ModelPricing."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UsageRecord(BaseModel):
    """One ledger line per completed LLM call. Never mutated."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    prompt_tokens: int
    completion_tokens: int
    estimated_cost_usd: float
    cache_hit: bool = False


class ModelPricing(BaseModel):
    """Price per 1M tokens, prompt and completion."""

    prompt_price_per_1m: float
    completion_price_per_1m: float
