"""
Configuration Settings

This module defines application configuration using Pydantic Settings.
All configuration is loaded from environment variables or .env file.

Design Decisions:
- Uses pydantic-settings for type-safe configuration
- Supports multiple environments (production, staging, dev)
- Rate limit counters live in a local SQLite file by default
- Client-tier settings (remote limiter, health monitor) share the same class
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings", "settings"]

BASE_DIR = Path(__file__).resolve().parent.parent.parent


class EnvSettingsOptions(Enum):
    """Environment options for deployment."""
    production = "production"
    staging = "staging"
    development = "dev"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Project Configuration
    ENV_SETTING: EnvSettingsOptions = Field(
        default=EnvSettingsOptions.development,
        description="Environment setting (production, staging, dev)"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level"
    )
    FRONTEND_URL: str = Field(
        default="*",
        description="Allowed CORS origin for the browser client"
    )

    # Rate Limit Store Configuration
    # For a throwaway store in tests: sqlite+aiosqlite:///<tmp>/rate_limits.db
    RATE_LIMIT_DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./data/rate_limits.db",
        description="Connection string for the rate limit window store"
    )
    RATE_LIMIT_DB_BUSY_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="How long a writer waits on a locked SQLite file"
    )
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: float = Field(
        default=300.0,
        description="Interval of the expired-window sweep"
    )

    # Authentication
    AUTH_TOKENS: dict[str, str] = Field(
        default_factory=dict,
        description="Static bearer token -> user id map for the development verifier"
    )

    # Client Tier Configuration
    REMOTE_LIMITER_URL: Optional[str] = Field(
        default=None,
        description="Base URL of the remote limiter (e.g. http://localhost:8000/api)"
    )
    REMOTE_LIMITER_TOKEN: Optional[str] = Field(
        default=None,
        description="Bearer token sent to the remote limiter"
    )
    REMOTE_LIMITER_TIMEOUT_SECONDS: float = Field(
        default=1.0,
        description="Timeout for consume/status calls against the remote limiter"
    )
    HEALTH_PROBE_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Timeout for the reachability probe"
    )
    STATUS_CACHE_TTL_SECONDS: float = Field(
        default=5.0,
        description="How long aggregate quota status is reused before refetching"
    )
    CLIENT_STATE_PATH: Optional[str] = Field(
        default=None,
        description="JSON file holding fallback counters, metrics and incidents (memory when unset)"
    )
    HEALTH_CHECK_INTERVAL_SECONDS: float = Field(
        default=300.0,
        description="Interval of the periodic health check"
    )
    INCIDENT_RETENTION_DAYS: int = Field(
        default=7,
        description="Incidents older than this are swept"
    )


settings = Settings()
