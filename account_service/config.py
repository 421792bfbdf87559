"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
Every setting can be overridden with an ``ACCOUNTS_`` prefixed environment variable.
"""

from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .accounts import AccountPolicy


class AccountServiceConfig(BaseSettings):
    """Account service configuration"""

    # Database configuration
    database_url: str = "sqlite:///accounts.db"  # memory:// for in-memory storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration (minor units)
    daily_withdraw_limit: int = Field(default=1_000_000, gt=0)
    daily_transfer_limit: int = Field(default=3_000_000, gt=0)
    transfer_fee_rate: Decimal = Field(default=Decimal("0.01"), ge=0, lt=1)

    # Optimistic concurrency
    max_retry_attempts: int = Field(default=3, ge=1)
    retry_backoff_ms: int = Field(default=10, ge=0)

    # Timezone whose calendar day resets the daily limits
    business_timezone: str = "UTC"

    class Config:
        env_prefix = "ACCOUNTS_"
        env_file = ".env"
        case_sensitive = False

    @field_validator("business_timezone")
    @classmethod
    def validate_business_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value!r}")
        return value

    def to_policy(self) -> AccountPolicy:
        """Limits and fee rate handed to the account core"""
        return AccountPolicy.from_limits(
            self.daily_withdraw_limit,
            self.daily_transfer_limit,
            self.transfer_fee_rate
        )


# Global configuration instance
config = AccountServiceConfig()


def get_config() -> AccountServiceConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> AccountServiceConfig:
    """Reload configuration from environment"""
    global config
    config = AccountServiceConfig()
    return config
