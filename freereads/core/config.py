"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
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
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def parse_csv(value: str | None) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items.

    Examples:
        >>> parse_csv("::1, 127.0.0.1,,")
        ['::1', '127.0.0.1']
        >>> parse_csv(None)
        []
    """
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class AuthSettings(BaseSettings):
    """JWT signing configuration.

    Access and refresh tokens are signed with independent secrets so that a
    leaked access secret cannot be used to mint refresh tokens (and vice versa).
    """

    access_secret: str = Field(
        ...,
        description="HMAC secret for access tokens",
    )
    refresh_secret: str = Field(
        ...,
        description="HMAC secret for refresh tokens (must differ from access_secret)",
    )
    access_ttl_seconds: int = Field(
        15 * 60,
        description="Access token lifetime in seconds",
        ge=1,
    )
    refresh_ttl_seconds: int = Field(
        7 * 24 * 60 * 60,
        description="Refresh token lifetime in seconds; also the token record TTL",
        ge=1,
    )
    algorithm: str = Field(
        "HS256",
        description="JWT signing algorithm",
    )
    prefix: str = Field(
        "token",
        description="Key prefix for token records in the key-value store",
    )

    @model_validator(mode="after")
    def check_secrets_differ(self) -> "AuthSettings":
        if self.access_secret == self.refresh_secret:
            raise ValueError("refresh_secret must differ from access_secret")
        return self

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Hard (fixed-window) rate limiter configuration."""

    enabled: bool = Field(
        True,
        description="Enable the fixed-window rate limiter",
    )
    window_seconds: int = Field(
        15 * 60,
        description="Rate limit window size in seconds",
        ge=1,
    )
    strict: int = Field(
        10,
        description="Limit for unauthenticated requests to auth routes",
        ge=1,
    )
    default: int = Field(
        100,
        description="Limit for other unauthenticated requests",
        ge=1,
    )
    authenticated: int = Field(
        150,
        description="Limit for requests carrying a verified identity",
        ge=1,
    )
    prefix: str = Field(
        "rate-control",
        description="Key prefix for rate window counters",
    )
    auth_route_pattern: str = Field(
        r"^/api/v1/auth(/.*)?$",
        description="Regex (case-insensitive) matching auth-sensitive routes",
    )
    trusted_ips: str = Field(
        "::1,127.0.0.1",
        description="Comma-separated addresses that bypass traffic control",
    )
    exempt_paths: str = Field(
        "/health,/docs,/redoc,/openapi.json",
        description="Comma-separated path prefixes that skip the security pipeline",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class SpeedLimitSettings(BaseSettings):
    """Soft (progressive delay) limiter configuration."""

    enabled: bool = Field(
        True,
        description="Enable progressive response delays",
    )
    window_seconds: int = Field(
        15 * 60,
        description="Speed limit window size in seconds",
        ge=1,
    )
    delay_after_percent: float = Field(
        60.0,
        description="Tier usage percentage below which no delay is applied",
        ge=0,
        lt=100,
    )
    min_delay_ms: int = Field(
        100,
        description="Delay applied once usage reaches delay_after_percent",
        ge=0,
    )
    max_delay_ms: int = Field(
        800,
        description="Upper bound for the progressive delay",
        ge=0,
    )
    warn_percent: float = Field(
        70.0,
        description="Tier usage percentage above which the abuse ledger is notified",
        ge=0,
    )
    prefix: str = Field(
        "speed-control",
        description="Key prefix for speed window counters",
    )

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "SpeedLimitSettings":
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError("min_delay_ms must not exceed max_delay_ms")
        return self

    model_config = SettingsConfigDict(
        env_prefix="SLOW_DOWN_",
        case_sensitive=False,
    )


class BlacklistSettings(BaseSettings):
    """Abuse ledger configuration."""

    prefix: str = Field(
        "blacklist",
        description="Key prefix for blacklist entries and attempt counters",
    )
    duration_seconds: int = Field(
        24 * 60 * 60,
        description="How long an IP stays blacklisted",
        ge=1,
    )
    max_login_attempts: int = Field(
        3,
        description="Failed logins per window before the IP is blacklisted",
        ge=1,
    )
    max_api_abuse: int = Field(
        1000,
        description="Rejected API credentials per window before blacklisting",
        ge=1,
    )
    max_refresh_attempts: int = Field(
        5,
        description="Failed refresh attempts per window before blacklisting",
        ge=1,
    )
    max_approaching_limit: int = Field(
        50,
        description="Requests above the speed warning threshold before blacklisting",
        ge=1,
    )
    attempt_reset_seconds: int = Field(
        60 * 60,
        description="Lifetime of an attempt counter window",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="BLACKLIST_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Distributed key-value store (Redis) connection settings."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    enabled: bool = Field(
        False,
        description="Use Redis; when false every instance keeps local state",
    )
    retry_attempts: int = Field(
        3,
        description="Reconnect attempts per command before giving up",
        ge=0,
    )
    backoff_base_seconds: float = Field(
        0.05,
        description="Base delay of the exponential reconnect backoff",
        gt=0,
    )
    backoff_cap_seconds: float = Field(
        2.0,
        description="Maximum delay between reconnect attempts",
        gt=0,
    )
    socket_timeout_seconds: float = Field(
        2.0,
        description="Socket connect/read timeout",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        "INFO",
        description="Root log level",
    )
    format: str = Field(
        "json",
        description="Log format: json or plain",
    )
    output: str = Field(
        "stdout",
        description="Log destination: stdout or file",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


def _build_auth_settings() -> "AuthSettings":
    """Build JWT settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AuthSettings()  # type: ignore[call-arg]


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if required settings are missing.

    Environments:
    - development: Local development
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    auth: AuthSettings = Field(default_factory=_build_auth_settings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    speed_limit: SpeedLimitSettings = Field(default_factory=SpeedLimitSettings)
    blacklist: BlacklistSettings = Field(default_factory=BlacklistSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
