"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates ranges and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Absolute ceiling for the multi-pass aggregate budget.
MAX_AGGREGATE_TIMEOUT_SECONDS = 300.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Credentials:
        PERPLEXITY_API_KEY: Bearer key for the search-augmented model
        ANTHROPIC_API_KEY: Key for the reasoning/synthesis model

    Both credentials are optional at load time. A missing key surfaces as a
    ConfigurationError when the corresponding service is first called, so
    tooling such as ``callprep config`` works without them.

    Optional:
        SEARCH_API_BASE_URL, SEARCH_MODEL, SYNTHESIS_MODEL
        PASS_TIMEOUT_SECONDS, AGGREGATE_TIMEOUT_SECONDS
        COMPANY_RESEARCH_TIMEOUT_SECONDS, PROSPECT_RESEARCH_TIMEOUT_SECONDS
        SYNTHESIS_TIMEOUT_SECONDS
        RETRY_MAX_ATTEMPTS, RETRY_INITIAL_DELAY_SECONDS,
        RETRY_MAX_DELAY_SECONDS, RETRY_BACKOFF_FACTOR
        BRIEF_REUSE_WINDOW_DAYS, HISTORY_DB_PATH
        LOG_LEVEL, LOG_FILE
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Credentials
    PERPLEXITY_API_KEY: str | None = Field(
        default=None, description="Search-augmented model API key"
    )
    ANTHROPIC_API_KEY: str | None = Field(
        default=None, description="Reasoning model API key"
    )

    # Models and endpoints
    SEARCH_API_BASE_URL: str = Field(
        default="https://api.perplexity.ai",
        description="Base URL of the search-augmented chat completion API",
    )
    SEARCH_MODEL: str = Field(default="sonar-pro", description="Search model")
    SYNTHESIS_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Reasoning model used for brief synthesis",
    )

    # Latency budgets
    PASS_TIMEOUT_SECONDS: float = Field(
        default=60.0, gt=0.0, description="Per-pass timeout for multi-pass research"
    )
    AGGREGATE_TIMEOUT_SECONDS: float = Field(
        default=180.0,
        gt=0.0,
        le=MAX_AGGREGATE_TIMEOUT_SECONDS,
        description="Aggregate timeout across all research passes",
    )
    COMPANY_RESEARCH_TIMEOUT_SECONDS: float = Field(
        default=60.0, gt=0.0, description="Outer timeout for company research"
    )
    PROSPECT_RESEARCH_TIMEOUT_SECONDS: float = Field(
        default=60.0, gt=0.0, description="Outer timeout for prospect research"
    )
    SYNTHESIS_TIMEOUT_SECONDS: float = Field(
        default=60.0, gt=0.0, description="Timeout for a single synthesis call"
    )

    # Retry policy
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    RETRY_INITIAL_DELAY_SECONDS: float = Field(default=1.0, ge=0.0)
    RETRY_MAX_DELAY_SECONDS: float = Field(default=10.0, ge=0.0)
    RETRY_BACKOFF_FACTOR: float = Field(default=2.0, ge=1.0)

    # Brief reuse
    BRIEF_REUSE_WINDOW_DAYS: int = Field(
        default=7, ge=0, description="Freshness window for reusing a ready brief"
    )
    HISTORY_DB_PATH: Path = Field(
        default=Path(".cache/briefs.db"), description="Brief history database"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON Lines log file")

    @model_validator(mode="after")
    def validate_retry_delays(self) -> Settings:
        """Ensure the backoff cap is not below the initial delay."""
        if self.RETRY_MAX_DELAY_SECONDS < self.RETRY_INITIAL_DELAY_SECONDS:
            raise ValueError(
                "RETRY_MAX_DELAY_SECONDS must be >= RETRY_INITIAL_DELAY_SECONDS"
            )
        return self

    @property
    def available_services(self) -> list[str]:
        """Return the external services that have credentials configured."""
        services: list[str] = []
        if self.PERPLEXITY_API_KEY:
            services.append("search")
        if self.ANTHROPIC_API_KEY:
            services.append("synthesis")
        return services

    def redacted_display(self) -> dict[str, str | int | float | None]:
        """Return settings with API keys redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "PERPLEXITY_API_KEY": redact(self.PERPLEXITY_API_KEY),
            "ANTHROPIC_API_KEY": redact(self.ANTHROPIC_API_KEY),
            "SEARCH_API_BASE_URL": self.SEARCH_API_BASE_URL,
            "SEARCH_MODEL": self.SEARCH_MODEL,
            "SYNTHESIS_MODEL": self.SYNTHESIS_MODEL,
            "PASS_TIMEOUT_SECONDS": self.PASS_TIMEOUT_SECONDS,
            "AGGREGATE_TIMEOUT_SECONDS": self.AGGREGATE_TIMEOUT_SECONDS,
            "COMPANY_RESEARCH_TIMEOUT_SECONDS": self.COMPANY_RESEARCH_TIMEOUT_SECONDS,
            "PROSPECT_RESEARCH_TIMEOUT_SECONDS": self.PROSPECT_RESEARCH_TIMEOUT_SECONDS,
            "SYNTHESIS_TIMEOUT_SECONDS": self.SYNTHESIS_TIMEOUT_SECONDS,
            "RETRY_MAX_ATTEMPTS": self.RETRY_MAX_ATTEMPTS,
            "RETRY_INITIAL_DELAY_SECONDS": self.RETRY_INITIAL_DELAY_SECONDS,
            "RETRY_MAX_DELAY_SECONDS": self.RETRY_MAX_DELAY_SECONDS,
            "RETRY_BACKOFF_FACTOR": self.RETRY_BACKOFF_FACTOR,
            "BRIEF_REUSE_WINDOW_DAYS": self.BRIEF_REUSE_WINDOW_DAYS,
            "HISTORY_DB_PATH": str(self.HISTORY_DB_PATH),
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
