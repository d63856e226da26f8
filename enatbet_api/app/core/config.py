"""
Simple configuration management.

The ``Settings`` dataclass reads configuration directly from
environment variables.  Defaults are provided for everything except
the business rates, which must be set explicitly in production and are
validated by ``get_business_config``.  Secrets (Stripe keys, the cron
secret) default to empty strings; features depending on them refuse to
run until they are configured.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


class ConfigError(ValueError):
    """Raised when a configuration value is missing or malformed."""


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = os.getenv("PROJECT_NAME", "Enatbet API")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "false").lower() in {"1", "true", "yes"}
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "")

    # Path to the SQLite database.  Relative paths are resolved against
    # the project root by the ``db`` module.
    database_url: str = os.getenv("DATABASE_URL", "enatbet.db")

    # Comma‑separated list of origins allowed by the CORS middleware.
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")

    # Firebase project whose ID tokens are accepted as bearer credentials.
    firebase_project_id: str = os.getenv("FIREBASE_PROJECT_ID", "")

    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    stripe_api_version: str = os.getenv("STRIPE_API_VERSION", "")
    stripe_webhook_tolerance: int = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))

    # Shared secret presented by the external scheduler calling the
    # cleanup endpoint as ``Authorization: Bearer <secret>``.
    cron_secret: str = os.getenv("CRON_SECRET", "")

    # Raw business configuration; parsed by ``get_business_config``.
    platform_fee_percentage: Optional[str] = os.getenv("PLATFORM_FEE_PERCENTAGE")
    tax_rate: Optional[str] = os.getenv("TAX_RATE")
    min_booking_amount_major: Optional[str] = os.getenv("MIN_BOOKING_AMOUNT_MAJOR")

    # How long a new booking holds its dates while awaiting payment.
    booking_hold_minutes: int = int(os.getenv("BOOKING_HOLD_MINUTES", "30"))
    payment_processing_timeout_hours: int = int(os.getenv("PAYMENT_PROCESSING_TIMEOUT_HOURS", "2"))

    # Rate limiting uses Redis when configured, otherwise process memory.
    redis_url: str = os.getenv("REDIS_URL", "")
    rate_limit_enabled: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in {"1", "true", "yes"}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


# Instantiate settings once so other modules can import it without
# repeatedly reading environment variables.
settings = Settings()


@dataclass(frozen=True)
class BusinessConfig:
    """Validated business rates used by the pricing calculation."""

    platform_fee_rate: float
    tax_rate: float
    min_booking_amount: float


_BUSINESS_DEFAULTS = {
    "PLATFORM_FEE_PERCENTAGE": 0.15,
    "TAX_RATE": 0.10,
    "MIN_BOOKING_AMOUNT_MAJOR": 10.0,
}


def _parse_rate(name: str, raw: Optional[str], lower: float, upper: Optional[float]) -> float:
    if raw is None or raw.strip() == "":
        if settings.is_production:
            raise ConfigError(f"{name} must be set in production")
        return _BUSINESS_DEFAULTS[name]
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < lower or (upper is not None and value > upper):
        bounds = f"between {lower} and {upper}" if upper is not None else f"greater than {lower}"
        raise ConfigError(f"{name} must be {bounds}, got {value}")
    return value


@lru_cache(maxsize=1)
def get_business_config() -> BusinessConfig:
    """Parse and validate the business rates.

    The result is memoized; call ``get_business_config.cache_clear()``
    after changing ``settings`` at runtime.
    """
    fee = _parse_rate("PLATFORM_FEE_PERCENTAGE", settings.platform_fee_percentage, 0.0, 1.0)
    tax = _parse_rate("TAX_RATE", settings.tax_rate, 0.0, 1.0)
    minimum = _parse_rate("MIN_BOOKING_AMOUNT_MAJOR", settings.min_booking_amount_major, 0.0, None)
    if minimum <= 0:
        raise ConfigError("MIN_BOOKING_AMOUNT_MAJOR must be greater than 0")
    return BusinessConfig(platform_fee_rate=fee, tax_rate=tax, min_booking_amount=minimum)
