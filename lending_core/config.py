"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LendingConfig(BaseSettings):
    """Lending engine configuration"""

    # Storage configuration
    use_sqlite: bool = False
    database_path: str = ":memory:"

    # Transient storage retry (lock timeouts, write conflicts)
    storage_retry_attempts: int = 3
    storage_retry_initial_wait_seconds: float = 0.05
    storage_retry_max_wait_seconds: float = 1.0

    # Schedule configuration
    month_overflow_policy: str = "clamp"  # clamp or roll

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8095

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "LENDING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
