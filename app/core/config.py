"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None

# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
# Tests set TESTING=true to keep a developer's local .env out of the run.
if _env_file and os.getenv("TESTING", "").lower() != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Static type checkers treat fields as constructor arguments, which is not
    how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    api_key_required: bool = Field(
        False,
        description="Reject anonymous callers instead of limiting them by client address",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated user_id:api_key pairs for caller authentication",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated API keys allowed to call admin endpoints",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Request rate limiting configuration."""

    enabled: bool = Field(
        True,
        description="Enable per-caller rate limiting on protected routes",
    )
    requests_per_minute: int = Field(
        100,
        description="Requests allowed per window for each caller",
        ge=0,
    )
    window_seconds: int = Field(
        60,
        description="Sliding window length in seconds",
        ge=1,
    )
    burst: int = Field(
        10,
        description="Token bucket capacity for the in-memory fallback limiter",
        ge=1,
    )
    cleanup_interval_seconds: float = Field(
        180.0,
        description="How often the in-memory limiter evicts idle callers",
        gt=0,
    )
    timeout_seconds: float = Field(
        2.0,
        description="Upper bound for one limiter query before failing open",
        gt=0,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    require_redis: bool = Field(
        False,
        description="Abort startup when Redis is configured but unreachable",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Shared rate limit store. Leave url unset to use the in-memory fallback."""

    url: str | None = Field(
        None,
        description="Redis connection URL (e.g., redis://localhost:6379/0)",
    )
    connect_timeout_seconds: float = Field(
        5.0,
        description="Timeout for establishing a connection",
        gt=0,
    )
    socket_timeout_seconds: float = Field(
        3.0,
        description="Read/write timeout for each command",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate log file after this size (0 disables)")
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field("X-Request-ID", description="Header carrying the request id")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
