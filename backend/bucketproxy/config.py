"""
Centralized configuration for the bucket proxy.

Settings are read from the environment once, validated, and frozen into a
``Settings`` instance that the application factory hands to every component.
Missing or malformed values raise ``ConfigurationError`` before the app exists.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple


REQUIRED_VARIABLES = (
    "ACCESS_KEY_ID",
    "SECRET_ACCESS_KEY",
    "BUCKET_NAMES",
    "ENDPOINT",
    "PRIVATE_TOKEN",
)

APP_ENVIRONMENTS = ("development", "production", "test")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

# Auth limiter defaults: 10 attempts per 30 minutes.
DEFAULT_AUTH_WINDOW_MS = 30 * 60 * 1000
DEFAULT_AUTH_MAX_REQUESTS = 10
# General API limiter defaults: 100 requests per minute.
DEFAULT_API_WINDOW_MS = 60 * 1000
DEFAULT_API_MAX_REQUESTS = 100

DEFAULT_SESSION_TTL_SECONDS = 60 * 60
DEFAULT_STORAGE_CONNECT_TIMEOUT = 5.0
DEFAULT_STORAGE_READ_TIMEOUT = 60.0


class ConfigurationError(Exception):
    """Raised when the process cannot start with the given settings."""


@dataclass(frozen=True)
class Settings:
    access_key_id: str
    secret_access_key: str
    bucket_names: Tuple[str, ...]
    endpoint: str
    private_token: str
    friendly_bucket_names: Tuple[str, ...] = ()
    region: str = "us-east-1"
    port: int = 3000
    app_env: str = "development"
    auth_window_ms: int = DEFAULT_AUTH_WINDOW_MS
    auth_max_requests: int = DEFAULT_AUTH_MAX_REQUESTS
    api_window_ms: int = DEFAULT_API_WINDOW_MS
    api_max_requests: int = DEFAULT_API_MAX_REQUESTS
    redis_url: Optional[str] = None
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    storage_connect_timeout: float = DEFAULT_STORAGE_CONNECT_TIMEOUT
    storage_read_timeout: float = DEFAULT_STORAGE_READ_TIMEOUT
    allowed_origins: Tuple[str, ...] = field(default=("*",))
    trust_proxy_headers: bool = False
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated value, dropping blank entries."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _positive_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _positive_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build validated settings from ``environ`` (defaults to ``os.environ``).

    Raises ``ConfigurationError`` when a required variable is missing, a
    numeric value is malformed, or the alias list does not line up with the
    bucket list.
    """
    if environ is None:
        environ = os.environ

    missing = [name for name in REQUIRED_VARIABLES if not (environ.get(name) or "").strip()]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    bucket_names = split_list(environ.get("BUCKET_NAMES"))
    if not bucket_names:
        raise ConfigurationError("BUCKET_NAMES must contain at least one bucket")

    friendly_names = split_list(environ.get("FRIENDLY_BUCKET_NAMES"))
    if friendly_names and len(friendly_names) != len(bucket_names):
        raise ConfigurationError(
            f"FRIENDLY_BUCKET_NAMES count ({len(friendly_names)}) must match "
            f"BUCKET_NAMES count ({len(bucket_names)})"
        )

    app_env = (environ.get("APP_ENV") or "development").strip().lower()
    if app_env not in APP_ENVIRONMENTS:
        raise ConfigurationError(
            f"APP_ENV must be one of {', '.join(APP_ENVIRONMENTS)}, got {app_env!r}"
        )

    log_level = (environ.get("LOG_LEVEL") or "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigurationError(
            f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}"
        )

    redis_url = (environ.get("REDIS_URL") or "").strip() or None

    return Settings(
        access_key_id=environ["ACCESS_KEY_ID"].strip(),
        secret_access_key=environ["SECRET_ACCESS_KEY"].strip(),
        bucket_names=tuple(bucket_names),
        friendly_bucket_names=tuple(friendly_names),
        endpoint=environ["ENDPOINT"].strip().rstrip("/"),
        region=(environ.get("REGION") or "us-east-1").strip(),
        private_token=environ["PRIVATE_TOKEN"],
        port=_positive_int(environ, "PORT", 3000),
        app_env=app_env,
        auth_window_ms=_positive_int(environ, "RATE_LIMIT_WINDOW_MS", DEFAULT_AUTH_WINDOW_MS),
        auth_max_requests=_positive_int(
            environ, "RATE_LIMIT_MAX_REQUESTS", DEFAULT_AUTH_MAX_REQUESTS
        ),
        api_window_ms=_positive_int(environ, "API_RATE_LIMIT_WINDOW_MS", DEFAULT_API_WINDOW_MS),
        api_max_requests=_positive_int(
            environ, "API_RATE_LIMIT_MAX_REQUESTS", DEFAULT_API_MAX_REQUESTS
        ),
        redis_url=redis_url,
        session_ttl_seconds=_positive_int(
            environ, "SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS
        ),
        storage_connect_timeout=_positive_float(
            environ, "STORAGE_CONNECT_TIMEOUT", DEFAULT_STORAGE_CONNECT_TIMEOUT
        ),
        storage_read_timeout=_positive_float(
            environ, "STORAGE_READ_TIMEOUT", DEFAULT_STORAGE_READ_TIMEOUT
        ),
        allowed_origins=tuple(split_list(environ.get("ALLOWED_ORIGINS")) or ["*"]),
        trust_proxy_headers=(environ.get("TRUST_PROXY_HEADERS") or "").strip() == "1",
        log_level=log_level,
    )
