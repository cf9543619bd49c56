# parkspot/core/config.py
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Runtime configuration for the booking core."""

    model_config = SettingsConfigDict(
        env_prefix="PARKSPOT_",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "test", "staging", "production"] = "development"

    # Persistence
    database_url: str = Field(
        default="sqlite+pysqlite:///./parkspot.db",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_pool_timeout: int = 10
    db_statement_timeout_ms: int = Field(
        default=15000,
        description="Default per-transaction statement timeout (PostgreSQL only)",
    )

    # Cache
    redis_url: Optional[str] = Field(default=None, description="Redis URL; in-memory when unset")
    cache_default_ttl_seconds: int = 300

    # Pricing policy
    tax_rate: Decimal = Decimal("0.18")
    service_fee_rate: Decimal = Decimal("0.05")
    currency: str = "INR"

    # Lifecycle policy
    check_in_window_minutes: int = 60
    full_refund_cutoff_hours: int = 24
    late_cancellation_refund_ratio: Decimal = Decimal("0.5")
    booking_reference_prefix: str = "PK"
    capacity_conflict_retries: int = 1

    # Payment gateway
    payment_gateway: Literal["mock", "stripe"] = "mock"
    stripe_secret_key: SecretStr = Field(default=SecretStr(""))
    payment_signature_secret: SecretStr = Field(
        default=SecretStr("dev-signature-secret"),
        description="Shared secret used to verify gateway payment signatures",
    )
    gateway_timeout_seconds: float = 8.0

    @field_validator("tax_rate", "service_fee_rate", "late_cancellation_refund_ratio")
    @classmethod
    def _validate_ratio(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 1:
            raise ValueError("rates must be between 0 and 1")
        return value

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().upper()


settings = Settings()
