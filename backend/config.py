"""Application configuration management."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from sqlalchemy.engine.url import make_url, URL
from typing import Literal, Optional
from uuid import UUID
import logging

SQLITE_LOCAL_URL = "sqlite+aiosqlite:///./settlement.db"

# Seeded by the initial migration; collects platform fees.
HOUSE_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = SQLITE_LOCAL_URL
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Application
    environment: str = "development"

    # Match lifecycle
    min_participants: int = 2
    pending_match_timeout_minutes: int = 30  # Cancel under-filled matches after this age
    activity_timeout_hours: int = 24  # Active matches move to voting after this long
    voting_window_minutes: int = 60
    dispute_window_hours: int = 24
    vote_reminder_lead_minutes: int = 15  # Remind voters this long before the deadline

    # Fees (whole percent of the pot, floored to whole tokens)
    platform_fee_percent: int = 2
    fee_sink_user_id: UUID = HOUSE_USER_ID

    # Settlement scheduler
    settlement_loop_enabled: bool = False  # In-process loop; external cron can use POST /settlement/run
    settlement_interval_seconds: int = 120
    settlement_startup_delay_seconds: int = 30
    settlement_batch_size: int = 100

    # Payment processor
    payment_processor_mode: Literal["sandbox", "http"] = "sandbox"
    payment_processor_url: str = "http://localhost:8002"
    payment_processor_api_key: str = ""
    external_timeout_seconds: int = 20

    # Notification delivery (empty -> log only)
    notification_webhook_url: str = ""

    # Evidence review (empty -> dispute resolution over HTTP disabled)
    dispute_reviewer_token: str = ""

    @model_validator(mode="after")
    def validate_all_config(self):
        """Validate settlement configuration and normalize Postgres URLs."""
        logger = logging.getLogger(__name__)

        if self.platform_fee_percent < 0 or self.platform_fee_percent > 100:
            raise ValueError("platform_fee_percent must be between 0 and 100")

        if self.min_participants < 2:
            raise ValueError("min_participants must be at least 2")

        if self.voting_window_minutes < 1:
            raise ValueError("voting_window_minutes must be at least 1 minute")

        if self.dispute_window_hours < 1:
            raise ValueError("dispute_window_hours must be at least 1 hour")

        if self.settlement_batch_size < 1:
            raise ValueError("settlement_batch_size must be at least 1")

        # Database URL normalization
        url = self.database_url
        if not url:
            logger.warning("Empty DATABASE_URL, using SQLite fallback")
            self.database_url = SQLITE_LOCAL_URL
            return self

        parsed: Optional[URL] = None
        try:
            parsed = make_url(url)
        except Exception as e:  # pragma: no cover
            logger.error(f"Failed to parse DATABASE_URL: {e}")
            logger.warning("Invalid DATABASE_URL; falling back to default sqlite database.")
            self.database_url = SQLITE_LOCAL_URL
            return self

        drivername = parsed.drivername
        if drivername.startswith("postgres") and "+asyncpg" not in drivername:
            old_drivername = drivername
            parsed = parsed.set(drivername="postgresql+asyncpg")
            logger.info(f"Driver normalized: {old_drivername} -> {parsed.drivername}")
            # Use render_as_string to properly re-encode special characters in password
            self.database_url = parsed.render_as_string(hide_password=False)

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
