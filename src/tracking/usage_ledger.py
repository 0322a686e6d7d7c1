# src/tracking/usage_ledger.py — v1
"""Append-only ledger of LLM usage, with monthly spend and budget checks.

Optionally persisted as JSON Lines; each record() appends one line so the
file never has to be rewritten.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from chatpipe.llm.models import Usage
from chatpipe.tracking.cost_calculator import estimate_cost
from chatpipe.tracking.models import ModelPricing, UsageRecord

logger = logging.getLogger(__name__)


class UsageLedger:
    """Accumulates UsageRecords across calls."""

    def __init__(
        self,
        path: Path | str | None = None,
        pricing: ModelPricing | None = None,
    ) -> None:
        self._path = Path(path).expanduser() if path is not None else None
        self._pricing = pricing
        self._records: list[UsageRecord] = []
        if self._path is not None and self._path.exists():
            self._records = _load(self._path)

    def record(
        self,
        usage: Usage,
        cache_hit: bool = False,
        now: datetime | None = None,
    ) -> UsageRecord:
        """Append a record for one call.

        Args:
            usage: Token usage reported by the endpoint.
            cache_hit: Whether the response came from the cache.
            now: Timestamp override (defaults to current UTC time).

        Returns:
            The appended UsageRecord.
        """
        record = UsageRecord(
            timestamp=now or datetime.now(timezone.utc),
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            estimated_cost_usd=estimate_cost(
                usage.prompt_tokens, usage.completion_tokens, self._pricing
            ),
            cache_hit=cache_hit,
        )
        self._records.append(record)
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
        return record

    @property
    def records(self) -> list[UsageRecord]:
        """All recorded calls, oldest first."""
        return list(self._records)

    @property
    def total_tokens(self) -> int:
        return sum(r.prompt_tokens + r.completion_tokens for r in self._records)

    def monthly_spend(self, now: datetime | None = None) -> float:
        """Estimated spend since the start of the current UTC calendar month."""
        now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return sum(
            r.estimated_cost_usd
            for r in self._records
            if _as_utc(r.timestamp) >= month_start
        )

    def is_within_budget(self, limit_usd: float, now: datetime | None = None) -> bool:
        """True while this month's spend is strictly below ``limit_usd``."""
        return self.monthly_spend(now) < limit_usd


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _load(path: Path) -> list[UsageRecord]:
    records: list[UsageRecord] = []
    with path.open(encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                records.append(UsageRecord.model_validate_json(line))
            except (ValidationError, json.JSONDecodeError) as e:
                logger.warning("Skipping malformed usage line %s:%d: %s", path.name, lineno, e)
    return records
