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

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field(
        "json",
        description="Log format: 'json' for structured output or 'plain'",
    )
    output: str = Field("stdout", description="Log destination: 'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    admin_api_key_required: bool = Field(
        True,
        description="Whether the admin routes require an API key",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated list of API keys accepted on admin routes",
    )
    include_rate_limit_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on rate limited responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Counting store backend configuration."""

    backend: str = Field(
        "memory",
        description="Counting store backend: 'memory' (single process) or 'redis'",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL used when backend=redis",
    )
    timeout_seconds: float = Field(
        0.5,
        description="Upper bound for a single store round-trip before failing open",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Thresholds for the rate limit engine, violation tracking and escalation."""

    bypass: bool = Field(
        False,
        description="Disable all enforcement (local/dev only)",
    )

    adaptive_enabled: bool = Field(True, description="Enable adaptive tightening")
    adaptive_violation_threshold: int = Field(
        5,
        description="Violations within the tightening window that trigger tightening",
        ge=1,
    )
    adaptive_tightening_window: int = Field(
        300,
        description="Rolling window (seconds) for per-client violation counters",
        ge=1,
    )
    adaptive_tightening_duration: int = Field(
        3600,
        description="How long (seconds) a tightened limit stays in effect",
        ge=1,
    )
    adaptive_tightening_factor: float = Field(
        0.5,
        description="Multiplier applied to max_requests while tightened",
        gt=0,
        le=1,
    )

    captcha_enabled: bool = Field(True, description="Enable CAPTCHA escalation")
    captcha_provider: str = Field("hcaptcha", description="CAPTCHA provider name returned to callers")
    captcha_wallet_violation_threshold: int = Field(
        3,
        description="Wallet-factor violations within the window that require a CAPTCHA",
        ge=1,
    )
    captcha_violation_window: int = Field(
        3600,
        description="Rolling window (seconds) for wallet violation counting",
        ge=1,
    )
    captcha_required_ttl: int = Field(
        3600,
        description="How long (seconds) a CAPTCHA requirement persists",
        ge=1,
    )

    global_violation_threshold: int = Field(
        100,
        description="Violations per minute across all endpoints that trigger global tightening",
        ge=1,
    )
    global_tightening_factor: float = Field(
        0.5,
        description="Multiplier applied to every endpoint while global tightening is active",
        gt=0,
        le=1,
    )
    global_tightening_duration: int = Field(
        900,
        description="How long (seconds) global tightening stays in effect",
        ge=1,
    )

    violation_log_max_entries: int = Field(
        1000,
        description="Maximum violation records kept per endpoint",
        ge=1,
    )
    violation_log_ttl: int = Field(
        86400,
        description="TTL (seconds) of each endpoint's violation log",
        ge=1,
    )

    wallet_factor_ratio: float = Field(0.7, description="Wallet factor share of max_requests", gt=0, le=1)
    email_factor_ratio: float = Field(0.7, description="Email factor share of max_requests", gt=0, le=1)
    device_factor_ratio: float = Field(0.8, description="Device factor share of max_requests", gt=0, le=1)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class AlertSettings(BaseSettings):
    """Outbound alert delivery configuration."""

    webhook_url: str | None = Field(
        None,
        description="Webhook receiving security alerts; alerts are only logged when unset",
    )
    timeout_seconds: float = Field(5.0, description="Webhook request timeout in seconds", gt=0)
    queue_max_size: int = Field(
        1000,
        description="Pending alerts kept in memory before new ones are dropped",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="ALERT_",
        case_sensitive=False,
    )


def _build_log_settings() -> LogSettings:
    return LogSettings()  # type: ignore[call-arg]


def _build_app_settings() -> AppSettings:
    """Build app settings from environment.

    Pydantic Settings (v2) populates values from environment variables, but
    static type checkers treat fields as constructor arguments, hence the
    type ignore.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_store_settings() -> StoreSettings:
    return StoreSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_alert_settings() -> AlertSettings:
    return AlertSettings()  # type: ignore[call-arg]


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    alert: AlertSettings = Field(default_factory=_build_alert_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
