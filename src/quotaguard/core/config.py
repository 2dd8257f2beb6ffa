"""
Configuration management for quotaguard.

Supports environment variables, .env files, and YAML configuration.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LimiterSettings(BaseSettings):
    """Request budget and backoff policy. All durations are milliseconds."""

    model_config = SettingsConfigDict(
        env_prefix="QUOTAGUARD_LIMITER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    rate_limit_window_ms: float = Field(default=60_000, gt=0)
    max_requests_per_window: int = Field(default=1, ge=1)
    retry_base_delay_ms: float = Field(default=2_000, ge=0)
    max_retries: int = Field(default=5, ge=0)
    min_request_interval_ms: float = Field(default=3_000, ge=0)

    # How often a caller re-checks an identity that is still in flight
    pending_poll_interval_ms: float = Field(default=3_000, gt=0)


class DispatcherSettings(BaseSettings):
    """Transport and queue settings for the request dispatcher."""

    model_config = SettingsConfigDict(
        env_prefix="QUOTAGUARD_DISPATCHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    request_timeout_seconds: float = 30.0
    call_timeout_seconds: float | None = Field(
        default=None,
        description="Upper bound on a caller's total wait, queueing included",
    )
    max_queue_size: int = Field(default=1000, ge=0, description="0 means unbounded")
    credentials_param: str = "apikey"
    user_agent: str = "quotaguard"


class Settings(BaseSettings):
    """Combined application settings."""

    model_config = SettingsConfigDict(
        env_prefix="QUOTAGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    limiter: LimiterSettings = Field(default_factory=LimiterSettings)
    dispatcher: DispatcherSettings = Field(default_factory=DispatcherSettings)

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in {"json", "console"}:
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
