"""Pulse Insights configuration — loads from pulse.yaml + .env."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load pulse.yaml from PULSE_CONFIG_PATH or default locations."""
    config_path = os.getenv("PULSE_CONFIG_PATH")
    search_paths = (
        [Path(config_path)]
        if config_path
        else [
            Path("/etc/pulse/pulse.yaml"),
            Path("pulse.yaml"),
        ]
    )
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


class LLMConfig(BaseSettings):
    """Upstream completion API configuration."""

    model: str = Field(default="openai/gpt-4o-mini", description="LiteLLM model identifier")
    api_key: str = Field(default="", description="API key for the LLM provider. Empty = fallback only")
    api_base: str = Field(default="https://api.openai.com/v1", description="Completion API base URL")
    max_tokens: int = Field(default=700, gt=0, description="Max output tokens per call")
    timeout_s: float = Field(default=30.0, gt=0, description="Per-call deadline in seconds")

    model_config = SettingsConfigDict(env_prefix="PULSE_LLM_")


class InsightsConfig(BaseSettings):
    """Insight gateway behavior."""

    digest_cache_ttl_s: float = Field(
        default=300.0,
        ge=0,
        description="Digest cache TTL in seconds. 0 disables caching",
    )
    prompt_max_items: int = Field(default=5, gt=0, description="Deals/alerts rendered per prompt")
    digest_temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    next_step_temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    contact_summary_temperature: float = Field(default=0.4, ge=0.0, le=2.0)

    model_config = SettingsConfigDict(env_prefix="PULSE_INSIGHTS_")


class AILogConfig(BaseSettings):
    """Invocation log sink. Leave everything empty to disable logging."""

    database_path: str = Field(default="", description="SQLite file for the ai_logs table")
    rest_url: str = Field(default="", description="PostgREST base URL (e.g. a Supabase project)")
    rest_service_key: str = Field(default="", description="Service key for the REST sink")
    table: str = Field(default="ai_logs")
    timeout_s: float = Field(default=5.0, gt=0)

    model_config = SettingsConfigDict(env_prefix="PULSE_AI_LOG_")

    @property
    def rest_enabled(self) -> bool:
        return bool(self.rest_url and self.rest_service_key)


class PulseConfig(BaseSettings):
    """Root Pulse Insights configuration."""

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8000, description="Server bind port")

    # Auth
    api_key: str = Field(default="", description="API key for authentication. Empty = no auth")

    # Sub-configs
    llm: LLMConfig = Field(default_factory=LLMConfig)
    insights: InsightsConfig = Field(default_factory=InsightsConfig)
    ai_log: AILogConfig = Field(default_factory=AILogConfig)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    model_config = SettingsConfigDict(
        env_prefix="PULSE_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> PulseConfig:
        """Load config from YAML + env vars (env takes precedence)."""
        yaml_cfg = _load_yaml_config()

        llm_data = yaml_cfg.pop("llm", {})
        insights_data = yaml_cfg.pop("insights", {})
        ai_log_data = yaml_cfg.pop("ai_log", {})

        # Only pass YAML sub-configs if they have data;
        # otherwise let pydantic-settings pick up env vars
        kwargs: dict[str, Any] = {**yaml_cfg}
        if llm_data:
            kwargs["llm"] = LLMConfig(**llm_data)
        if insights_data:
            kwargs["insights"] = InsightsConfig(**insights_data)
        if ai_log_data:
            kwargs["ai_log"] = AILogConfig(**ai_log_data)

        return cls(**kwargs)


# Singleton
_config: PulseConfig | None = None


def get_config() -> PulseConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = PulseConfig.load()
    return _config
