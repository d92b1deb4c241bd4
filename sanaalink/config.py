"""
Centralized configuration with environment variable overrides.

Scheduling defaults, payment proxy endpoints, and timeouts are
configurable here. Nothing is hardcoded in scheduling or checkout logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


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


def _safe_bool(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() in _TRUTHY


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot generation and store access settings."""

    default_service_duration_min: int = _safe_int("DEFAULT_SERVICE_DURATION_MIN", "60")
    booking_window_days: int = _safe_int("BOOKING_WINDOW_DAYS", "30")
    store_timeout_sec: float = _safe_float("STORE_TIMEOUT_SEC", "15.0")


@dataclass(frozen=True)
class PaymentConfig:
    """Mobile-money push proxy settings."""

    stk_push_url: str = os.getenv(
        "STK_PUSH_URL", "http://localhost:54321/functions/v1/mpesa-stk-push"
    )
    stk_push_api_key: str = os.getenv("STK_PUSH_API_KEY", "")
    shortcode: str = os.getenv("MPESA_SHORTCODE", "174379")
    timeout_sec: float = _safe_float("PAYMENT_TIMEOUT_SEC", "30.0")
    currency: str = os.getenv("CURRENCY", "KES")
    compensate_on_gateway_rejection: bool = _safe_bool(
        "COMPENSATE_ON_GATEWAY_REJECTION", "true"
    )


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "SanaaLink")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.scheduling.default_service_duration_min < 1:
        raise ValueError(
            "DEFAULT_SERVICE_DURATION_MIN must be >= 1, "
            f"got {config.scheduling.default_service_duration_min}"
        )
    if config.scheduling.booking_window_days < 1:
        raise ValueError(
            f"BOOKING_WINDOW_DAYS must be >= 1, got {config.scheduling.booking_window_days}"
        )
    if config.scheduling.store_timeout_sec <= 0:
        raise ValueError(
            f"STORE_TIMEOUT_SEC must be > 0, got {config.scheduling.store_timeout_sec}"
        )
    if config.payment.timeout_sec <= 0:
        raise ValueError(
            f"PAYMENT_TIMEOUT_SEC must be > 0, got {config.payment.timeout_sec}"
        )
    if not config.payment.stk_push_url:
        raise ValueError("STK_PUSH_URL must not be empty")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()
