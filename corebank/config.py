"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


DEFAULT_JWT_SECRET = "change-me-in-production"


class CorebankConfig(BaseSettings):
    """Core bank service configuration"""

    model_config = SettingsConfigDict(
        env_prefix="COREBANK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///corebank.db"  # memory://, sqlite:///path or postgresql://...
    auto_migrate: bool = True

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 9999
    api_workers: int = 1

    # Security configuration
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_expiry_minutes: int = 60
    jwt_algorithm: str = "HS256"
    password_min_length: int = 6
    scrypt_n: int = 16384  # scrypt CPU/memory cost, power of two

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr


# Global configuration instance
config = CorebankConfig()


def get_config() -> CorebankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CorebankConfig:
    """Reload configuration from environment"""
    global config
    config = CorebankConfig()
    return config
