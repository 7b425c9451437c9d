"""
Configuration settings for the Cognitive Profiler service.

Uses Pydantic Settings to manage environment variables and configuration
with proper validation and type checking.
"""

from typing import Dict, List, Optional
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = Field(default="Cognitive Profiler", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(
        default=False,
        description="Debug mode",
        validation_alias=AliasChoices("DEBUG", "debug"),
    )

    # API settings
    api_host: str = Field(
        default="0.0.0.0",
        description="API host",
        validation_alias=AliasChoices("API_HOST", "api_host"),
    )
    api_port: int = Field(
        default=8000,
        description="API port",
        validation_alias=AliasChoices("API_PORT", "api_port"),
    )
    api_prefix: str = Field(default="/v1", description="API prefix")
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # Credit ledger storage
    database_url: str = Field(
        default="sqlite:///./credits.db",
        description="Credit ledger database URL",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
    )
    database_pool_size: int = Field(
        default=10,
        description="Database connection pool size"
    )

    # Provider credentials
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    deepseek_api_key: Optional[str] = Field(default=None, description="DeepSeek API key")
    perplexity_api_key: Optional[str] = Field(default=None, description="Perplexity API key")

    # Provider models and endpoints
    openai_model: str = Field(default="gpt-4o", description="OpenAI model")
    anthropic_model: str = Field(default="claude-3-7-sonnet-20250219", description="Anthropic model")
    deepseek_model: str = Field(default="deepseek-chat", description="DeepSeek model")
    deepseek_base_url: str = Field(default="https://api.deepseek.com/v1", description="DeepSeek API base URL")
    perplexity_model: str = Field(default="sonar-pro", description="Perplexity model")
    perplexity_base_url: str = Field(default="https://api.perplexity.ai", description="Perplexity API base URL")
    llm_temperature: float = Field(
        default=0.7,
        description="Sampling temperature (0.0-1.0)",
        validation_alias=AliasChoices("LLM_TEMPERATURE", "TEMPERATURE", "llm_temperature"),
    )
    llm_max_tokens: int = Field(
        default=2000,
        description="Maximum tokens per provider response",
        validation_alias=AliasChoices("LLM_MAX_TOKENS", "llm_max_tokens"),
    )

    # Orchestration settings
    provider_timeout_seconds: float = Field(
        default=120.0,
        description="Default per-provider call timeout in seconds",
        validation_alias=AliasChoices("PROVIDER_TIMEOUT_SECONDS", "provider_timeout_seconds"),
    )
    provider_timeouts: Dict[str, float] = Field(
        default_factory=dict,
        description="Per-provider timeout overrides, e.g. {\"perplexity\": 60}"
    )
    provider_max_retries: int = Field(
        default=0,
        description="Orchestrator-level retries for unavailable providers",
        validation_alias=AliasChoices("PROVIDER_MAX_RETRIES", "provider_max_retries"),
    )
    cost_overrides: Dict[str, Dict[str, int]] = Field(
        default_factory=dict,
        description="Credit cost overrides keyed by analysis kind, then provider"
    )
    preview_max_words: int = Field(
        default=200,
        description="Word limit for preview excerpts"
    )
    run_retention_seconds: int = Field(
        default=900,
        description="How long finished runs stay pollable"
    )
    stale_hold_seconds: float = Field(
        default=900.0,
        description="Minimum age before an unsettled reservation is released by the sweep"
    )
    stale_hold_sweep_seconds: float = Field(
        default=300.0,
        description="Interval between stale reservation sweeps; 0 sweeps only at startup"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        description="Log format (json, text)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v.lower() not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v.lower()

    @field_validator("llm_temperature")
    @classmethod
    def validate_llm_temperature(cls, v):
        fv = float(v)
        if fv < 0.0:
            fv = 0.0
        if fv > 1.0:
            fv = 1.0
        return fv

    @field_validator("provider_timeout_seconds")
    @classmethod
    def validate_provider_timeout(cls, v):
        if v <= 0:
            raise ValueError("provider_timeout_seconds must be positive")
        # Keep within sane bounds so one run can never hang indefinitely
        return min(float(v), 600.0)

    @field_validator("stale_hold_seconds", "stale_hold_sweep_seconds")
    @classmethod
    def validate_stale_hold(cls, v):
        return max(0.0, float(v))

    @field_validator("provider_max_retries")
    @classmethod
    def validate_provider_max_retries(cls, v):
        return max(0, min(int(v), 5))

    def timeout_for(self, provider: str) -> float:
        """Return the call timeout for a provider, honoring overrides."""
        key = getattr(provider, "value", provider)
        override = self.provider_timeouts.get(key)
        if override and override > 0:
            return min(float(override), 600.0)
        return self.provider_timeout_seconds

    def api_key_for(self, provider: str) -> Optional[str]:
        """Return the configured API key for a provider, if any."""
        key = getattr(provider, "value", provider)
        return getattr(self, f"{key}_api_key", None)


# Global settings instance
settings = Settings()
