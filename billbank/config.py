"""
Configuration Management Module

Settings are read from ``BILLBANK_*`` environment variables or a ``.env``
file through pydantic-settings.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


BALANCE_CHECK_MODES = ("computed", "snapshot")
LOG_FORMATS = ("json", "text")


class BillbankConfig(BaseSettings):
    """Billbank system configuration"""

    # Database
    database_url: str = "sqlite:///billbank.db"
    database_pool_size: int = 5
    database_pool_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False
    database_slow_query_ms: int = Field(1000, ge=0)

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None  # stderr when unset

    # Transfers
    authorization_key_length: int = Field(5, ge=4, le=32)
    authorization_key_max_attempts: int = Field(5, ge=1)
    # Source of the sender balance checked when a transfer is created
    creation_balance_check: str = "computed"

    # Startup
    auto_create_schema: bool = True
    seed_reference_data: bool = True

    @field_validator("creation_balance_check")
    @classmethod
    def _check_balance_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in BALANCE_CHECK_MODES:
            raise ValueError(f"creation_balance_check must be one of {BALANCE_CHECK_MODES}")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")
        return value

    class Config:
        env_prefix = "BILLBANK_"
        env_file = ".env"
        case_sensitive = False


config = BillbankConfig()


def get_config() -> BillbankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BillbankConfig:
    """Reload configuration from environment"""
    global config
    config = BillbankConfig()
    return config
