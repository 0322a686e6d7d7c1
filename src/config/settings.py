# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for endpoint, retry, cache, budget and logging
settings. Every field maps to an upper-case env var of the same name
(e.g. LLM_ENDPOINT, CACHE_TTL_DAYS).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === ENDPOINT ===
    llm_endpoint: str = "http://localhost:3000/api/chat"
    llm_api_key: str = ""
    llm_model: str = "glm-4.7-flash"
    llm_vision_model: str = "glm-4.6v-flash"
    llm_max_tokens: int = 2048
    llm_temperature: float = 0.3
    llm_timeout_s: float = 60.0

    # === Retry ===
    llm_max_retries: int = 3
    llm_backoff_base_s: float = 1.0
    llm_retry_transport: bool = False

    # === Context budget ===
    context_max_tokens: int = 190_000

    # === Cache ===
    cache_enabled: bool = True
    cache_backend: Literal["memory", "json", "sqlite"] = "sqlite"
    cache_root: Path = Path("~/.chatpipe/cache")
    cache_ttl_days: float = 7.0

    # === Usage / budget ===
    budget_limit_usd: float = 5.0
    usage_ledger_path: Path | None = Path("~/.chatpipe/usage.jsonl")
    prompt_cost_per_1m: float = 3.0
    completion_cost_per_1m: float = 15.0

    # === Pipeline ===
    coalesce_inflight: bool = True

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator("llm_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:  # noqa: N805
        """Endpoint must be an absolute http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("llm_endpoint must be an absolute http(s) URL")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate numeric ranges that depend on each other."""
        errors: list[str] = []

        if self.llm_timeout_s <= 0:
            errors.append("LLM_TIMEOUT_S must be > 0")
        if self.llm_max_retries < 0:
            errors.append("LLM_MAX_RETRIES must be >= 0")
        if self.llm_backoff_base_s < 0:
            errors.append("LLM_BACKOFF_BASE_S must be >= 0")
        if self.cache_ttl_days <= 0:
            errors.append("CACHE_TTL_DAYS must be > 0")
        if self.llm_max_tokens >= self.context_max_tokens:
            errors.append("LLM_MAX_TOKENS must be < CONTEXT_MAX_TOKENS")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def credential(self) -> str | None:
        """API key as a bearer credential, or None when unset."""
        return self.llm_api_key or None


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-call config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
