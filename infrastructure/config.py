"""
Centralized configuration with environment variable overrides.

Secrets, pricing fallbacks and billing settings are read once at start-up;
services receive them by injection instead of hardcoding them.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

from infrastructure.logging_context import RequestIdFilter

load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] [%(request_id)s] %(levelname)s: %(message)s"


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _csv(env_var: str, default: str) -> Tuple[str, ...]:
    raw = os.getenv(env_var, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class SecurityConfig:
    """JWT signing and token lifetimes."""

    secret_key: str = os.getenv("SECRET_KEY", "change-me-in-production")
    algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    access_token_expire_minutes: int = _safe_int("ACCESS_TOKEN_EXPIRE_MINUTES", "30")
    invite_token_expire_days: int = _safe_int("INVITE_TOKEN_EXPIRE_DAYS", "30")


@dataclass(frozen=True)
class PricingConfig:
    """Fallbacks used when a property is missing pricing data."""

    default_base_rate: float = _safe_float("PRICING_DEFAULT_BASE_RATE", "150")
    currency: str = os.getenv("PRICING_CURRENCY", "USD")


@dataclass(frozen=True)
class BillingConfig:
    """Billing provider REST settings."""

    api_key: str = os.getenv("BILLING_API_KEY", "")
    base_url: str = os.getenv("BILLING_BASE_URL", "https://api.revenuecat.com/v1")
    timeout_seconds: float = _safe_float("BILLING_TIMEOUT_SECONDS", "10")
    payment_window_hours: int = _safe_int("PAYMENT_WINDOW_HOURS", "24")
    max_retries: int = _safe_int("BILLING_MAX_RETRIES", "1")
    host_product_markers: Tuple[str, ...] = _csv(
        "BILLING_HOST_PRODUCT_MARKERS", "six_month,professional,$rc_six_month"
    )


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    security: SecurityConfig = field(default_factory=SecurityConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "Plek Booking API")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.pricing.default_base_rate < 0:
        raise ValueError(
            f"PRICING_DEFAULT_BASE_RATE must be >= 0, got {config.pricing.default_base_rate}"
        )
    if config.security.access_token_expire_minutes < 1:
        raise ValueError(
            "ACCESS_TOKEN_EXPIRE_MINUTES must be >= 1, "
            f"got {config.security.access_token_expire_minutes}"
        )
    if config.security.invite_token_expire_days < 1:
        raise ValueError(
            f"INVITE_TOKEN_EXPIRE_DAYS must be >= 1, got {config.security.invite_token_expire_days}"
        )
    if config.billing.timeout_seconds <= 0:
        raise ValueError(
            f"BILLING_TIMEOUT_SECONDS must be > 0, got {config.billing.timeout_seconds}"
        )
    if config.billing.payment_window_hours < 1:
        raise ValueError(
            f"PAYMENT_WINDOW_HOURS must be >= 1, got {config.billing.payment_window_hours}"
        )
    if config.billing.max_retries < 0:
        raise ValueError(
            f"BILLING_MAX_RETRIES must be >= 0, got {config.billing.max_retries}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())
    if not config.billing.api_key:
        logger.warning("BILLING_API_KEY is not set; payment verification uses the offline verifier")
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()
