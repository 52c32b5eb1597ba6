"""
Runtime configuration for the webhook gateway and entitlement service.

Configuration (environment variables):
- STRIPE_WEBHOOK_SECRET:         Shared secret for Stripe-Signature (required)
- WEBHOOK_RATE_LIMIT:            Max webhook requests per window (default: "100")
- WEBHOOK_RATE_LIMIT_WINDOW_MS:  Window duration in milliseconds (default: "60000")
- WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS: Replay window (default: "300")
- RATE_LIMIT_ENABLED:            Kill switch (default: "true")
- REDIS_URL:                     Shared rate-limit store; in-memory when unset
- FEATURE_CATALOG_PATH:          Feature descriptors (default: "config/features.json")
- DATABASE_URL:                  Subscription store; in-memory when unset

Settings are validated once when the app is built. A missing secret or a
non-positive limit raises ConfigurationError at startup, never per request.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_RATE_LIMIT = 100
DEFAULT_WINDOW_MS = 60_000
DEFAULT_TIMESTAMP_TOLERANCE_SECONDS = 300
DEFAULT_FEATURE_CATALOG_PATH = "config/features.json"


class ConfigurationError(ValueError):
    """Raised when required configuration is missing or malformed."""


def _is_rate_limit_enabled() -> bool:
    return os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("true", "1", "yes")


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _get_optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    webhook_secret: str
    rate_limit: int = DEFAULT_RATE_LIMIT
    rate_limit_window_ms: int = DEFAULT_WINDOW_MS
    timestamp_tolerance_seconds: int = DEFAULT_TIMESTAMP_TOLERANCE_SECONDS
    rate_limit_enabled: bool = True
    redis_url: Optional[str] = None
    feature_catalog_path: str = DEFAULT_FEATURE_CATALOG_PATH
    database_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.webhook_secret or not self.webhook_secret.strip():
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is required")
        if self.rate_limit <= 0:
            raise ConfigurationError("WEBHOOK_RATE_LIMIT must be positive")
        if self.rate_limit_window_ms <= 0:
            raise ConfigurationError("WEBHOOK_RATE_LIMIT_WINDOW_MS must be positive")
        if self.timestamp_tolerance_seconds <= 0:
            raise ConfigurationError("WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS must be positive")


def load_settings() -> Settings:
    """Build Settings from the environment, raising ConfigurationError on bad values."""
    return Settings(
        webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        rate_limit=_get_int("WEBHOOK_RATE_LIMIT", DEFAULT_RATE_LIMIT),
        rate_limit_window_ms=_get_int("WEBHOOK_RATE_LIMIT_WINDOW_MS", DEFAULT_WINDOW_MS),
        timestamp_tolerance_seconds=_get_int(
            "WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS", DEFAULT_TIMESTAMP_TOLERANCE_SECONDS
        ),
        rate_limit_enabled=_is_rate_limit_enabled(),
        redis_url=_get_optional("REDIS_URL"),
        feature_catalog_path=os.getenv("FEATURE_CATALOG_PATH", DEFAULT_FEATURE_CATALOG_PATH),
        database_url=_get_optional("DATABASE_URL"),
    )
