"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LendwiseConfig(BaseSettings):
    """Lendwise loan ledger configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "lendwise.db"

    # Ledger rules
    default_currency: str = "INR"
    dust_threshold: str = "1.00"  # Balances below this clear to zero
    reject_backdated_payments: bool = False  # False = clamp accrual to zero and warn

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "LENDWISE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LendwiseConfig()


def get_config() -> LendwiseConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendwiseConfig:
    """Reload configuration from environment"""
    global config
    config = LendwiseConfig()
    return config
