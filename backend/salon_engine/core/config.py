# backend/salon_engine/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


_BACKEND_ROOT = Path(__file__).resolve().parents[2]

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _BACKEND_ROOT / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Database
    database_url: str = Field(
        default=f"sqlite:///{_BACKEND_ROOT / 'salon_engine.db'}",
        description="SQLAlchemy URL for the booking store",
    )
    test_database_url: str = Field(
        default="sqlite://",
        description="Database used by the test-suite (never a production URL)",
    )
    sql_echo: bool = False
    is_testing: bool = False

    # Local day used for queue computations
    business_timezone: str = Field(default="Africa/Lagos")

    # Worker assignment transaction policy
    assignment_max_attempts: int = Field(default=3, ge=1, le=3)
    assignment_retry_base_delay_seconds: float = Field(default=0.05, ge=0)
    assignment_retry_multiplier: float = Field(default=2.0, ge=1)
    assignment_retry_max_delay_seconds: float = Field(default=1.0, ge=0)
    transaction_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Default deadline applied to each transaction attempt",
    )

    # Payment gateway (Paystack)
    paystack_secret_key: SecretStr = Field(default=SecretStr(""))
    paystack_base_url: str = "https://api.paystack.co"
    paystack_timeout_seconds: float = 10.0
    webhook_verification_window_hours: int = Field(default=24, ge=1)
    payment_reference_prefix: str = "MANUAL"

    # Queue presentation
    queue_overdue_after_minutes: int = 30
    queue_upcoming_within_minutes: int = 15
    queue_default_service_minutes: int = 30

    # Notification outbox / Celery
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: Optional[str] = None
    outbox_max_delivery_attempts: int = 5

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("business_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        import pytz

        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown business timezone: {value}") from exc
        return value

    def get_database_url(self) -> str:
        """Get the appropriate database URL based on context."""
        if self.is_testing or is_running_tests():
            return self.test_database_url
        return self.database_url


settings = Settings()
