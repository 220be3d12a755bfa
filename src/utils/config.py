"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database
    DATABASE_URL: Optional[str] = None
    SQLITE_PATH: str = "monetization_dev.db"
    SQL_DEBUG: bool = False

    # Connection pool (PostgreSQL)
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Timeouts (seconds)
    DB_POOL_TIMEOUT: int = 10          # Wait for a free connection slot
    DB_TRANSACTION_TIMEOUT: int = 30   # Upper bound for a single transaction

    # Queue behaviour
    OPPORTUNITY_TTL_DAYS: int = 30
    EXPIRE_AFTER_DAYS: int = 30

    # Impact tracking
    ATTRIBUTION_CONFIDENCE: float = 0.7

    # Access control for the HTTP adapter (unset = local development)
    ADMIN_API_KEY: Optional[str] = None
    CRON_SECRET: Optional[str] = None

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
