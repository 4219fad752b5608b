"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Check core settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - defaults to relative path for Docker, override via env for local dev
    database_url: str = "sqlite:///./checkcore.db"
    db_pool_size: int = 20
    db_max_overflow: int = 40
    db_echo: bool = False

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Money
    currency: str = "USD"
    # A check closes once completed payments reach total minus this amount
    payment_close_tolerance: Decimal = Decimal("0.05")

    # Business date (operating day) resolution
    timezone: str = "America/New_York"
    business_date_rollover: str = "04:00"

    # Optimistic concurrency on checks; disable only for terminals that
    # cannot send the check version yet
    enforce_check_version: bool = True

    # Require a manager PIN for every discount, not only when one is offered
    require_discount_approval: bool = False

    # Manager PIN hashing cost
    bcrypt_rounds: int = 12

    # WebSocket fan-out
    ws_max_connections_per_channel: int = 1000

    @field_validator("payment_close_tolerance")
    @classmethod
    def validate_tolerance(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("payment_close_tolerance must not be negative")
        return v

    @field_validator("business_date_rollover")
    @classmethod
    def validate_rollover(cls, v: str) -> str:
        try:
            hours, minutes = (int(part) for part in v.split(":"))
        except ValueError:
            raise ValueError(f"business_date_rollover must be HH:MM, got {v!r}")
        if not (0 <= hours < 24 and 0 <= minutes < 60):
            raise ValueError(f"business_date_rollover out of range: {v!r}")
        return v

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        # bcrypt accepts cost factors 4..31
        if not 4 <= v <= 31:
            raise ValueError("bcrypt_rounds must be between 4 and 31")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
