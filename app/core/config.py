"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Complex values (rate limit rules, cache profiles) are read from JSON strings,
e.g. ``RATE_LIMIT_GENERAL_RULES='[{"endpoint": "*", "limit": 100, "period": "5m"}]'``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
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


class RateLimitRuleConfig(BaseModel):
    """A single rate limit rule as written in configuration."""

    endpoint: str = Field(..., description='Endpoint pattern, "*" matches everything')
    limit: int = Field(..., ge=1, description="Maximum requests per period")
    period: str = Field(..., description='Duration such as "1s", "5m", "1h", "1d"')


class CacheProfileConfig(BaseModel):
    """Cache-Control profile for a class of resources."""

    max_age: int = Field(65, ge=0)
    location: Literal["private", "public"] = "private"
    must_revalidate: bool = True
    no_store: bool = False


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    name: str = Field(
        "Company Employees API",
        description="Service name shown in OpenAPI docs",
    )
    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    exempt_paths: list[str] = Field(
        default_factory=lambda: ["/health", "/docs", "/redoc", "/openapi.json"],
        description="Paths that bypass versioning, rate limiting and caching",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    url: str = Field(
        "sqlite:///./company_employees.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(False, description="Log emitted SQL statements")
    commit_timeout_seconds: float = Field(
        5.0,
        gt=0,
        description="Deadline for persisting one unit of work",
    )
    query_timeout_seconds: float | None = Field(
        5.0,
        description="Deadline for a single read query (None disables it)",
    )
    create_schema: bool = Field(
        True,
        description="Create missing tables on startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration (per-client quotas)."""

    enabled: bool = Field(True, description="Enable per-client rate limiting")
    general_rules: list[RateLimitRuleConfig] = Field(
        default_factory=lambda: [RateLimitRuleConfig(endpoint="*", limit=100, period="5m")],
        description="Ordered rules applied to every client",
    )
    client_rules: dict[str, list[RateLimitRuleConfig]] = Field(
        default_factory=dict,
        description="Per-client overrides keyed by client key (client id or IP)",
    )
    client_id_header: str = Field(
        "X-ClientId",
        description="Header identifying the client; falls back to the client IP",
    )
    trust_forwarded_headers: bool = Field(
        True,
        description="Use the first X-Forwarded-For hop as the client IP",
    )
    client_whitelist: list[str] = Field(
        default_factory=list,
        description="Client keys never rate limited",
    )
    endpoint_whitelist: list[str] = Field(
        default_factory=list,
        description="Endpoint patterns never rate limited",
    )
    window_mode: Literal["fixed", "rolling"] = Field(
        "fixed",
        description="fixed admits boundary bursts up to 2x limit; rolling does not",
    )
    lock_timeout_seconds: float = Field(
        0.05,
        gt=0,
        description="Max wait for a counter key lock per attempt",
    )
    lock_retry_attempts: int = Field(
        3,
        ge=1,
        description="Lock acquisition attempts before degrading",
    )
    on_lock_contention: Literal["allow", "deny"] = Field(
        "allow",
        description="Decision when the counter lock cannot be acquired (fail-open/closed)",
    )
    sweep_interval_seconds: float = Field(
        60.0,
        gt=0,
        description="Interval of the background purge of expired counters",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Conditional HTTP caching configuration."""

    enabled: bool = Field(True, description="Emit validators and honour conditional requests")
    max_age: int = Field(65, ge=0, description="Default max-age in seconds")
    location: Literal["private", "public"] = Field("private", description="Default cache location")
    must_revalidate: bool = Field(
        True,
        description="Require revalidation before every reuse, even within max-age",
    )
    resource_profiles: dict[str, CacheProfileConfig] = Field(
        default_factory=dict,
        description="Cache profiles keyed by path prefix (longest prefix wins)",
    )
    validator_store_ttl_seconds: int = Field(
        3600,
        ge=1,
        description="How long the last known validator of a resource is remembered",
    )
    validator_store_max_entries: int | None = Field(
        4096,
        description="Maximum remembered validators (None for unlimited)",
    )
    trust_validator_store: bool = Field(
        False,
        description="Answer If-None-Match from the stored validator without running the handler",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class VersioningSettings(BaseSettings):
    """Header-based API versioning configuration."""

    header_name: str = Field("api-version", description="Request header carrying the version")
    report_api_versions: bool = Field(
        True,
        description="Add api-supported-versions to responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="API_VERSION_",
        case_sensitive=False,
    )


class CorsSettings(BaseSettings):
    """Cross-origin access for browser clients."""

    enabled: bool = Field(True, description="Install the CORS middleware")
    allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    allow_methods: list[str] = Field(default_factory=lambda: ["*"])
    allow_headers: list[str] = Field(default_factory=lambda: ["*"])
    expose_headers: list[str] = Field(
        default_factory=lambda: ["X-Pagination"],
        description="Response headers browser scripts may read",
    )

    model_config = SettingsConfigDict(
        env_prefix="CORS_",
        case_sensitive=False,
    )


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
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    versioning: VersioningSettings = Field(default_factory=VersioningSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
