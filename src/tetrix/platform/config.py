"""
Tetrix Configuration Management

Uses Pydantic Settings for type-safe configuration from environment variables.
"""

from datetime import date
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # =========================================================================
    # APPLICATION
    # =========================================================================
    APP_NAME: str = "Tetrix"
    APP_ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "info"
    VERSION: str = "0.1.0"

    # =========================================================================
    # API SERVER
    # =========================================================================
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: str = "http://localhost:5173"

    # =========================================================================
    # STORAGE
    # =========================================================================
    STORAGE_BACKEND: str = "memory"  # memory | sql
    DATABASE_URL: str = "sqlite:///data/tetrix.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_ECHO: bool = False
    ROSTER_FILE: Optional[str] = None  # JSON list of translator profiles loaded at startup

    # =========================================================================
    # CALENDAR
    # =========================================================================
    TIMEZONE: str = "America/Toronto"
    HOLIDAYS: List[date] = []
    DEFAULT_SCHEDULE: str = "9h-17h"
    LUNCH_START: float = 12.0
    LUNCH_END: float = 13.0
    DEFAULT_DAILY_CAPACITY: float = 7.0

    # =========================================================================
    # DISTRIBUTION
    # =========================================================================
    MAX_LOOKBACK_DAYS: int = 90
    HOURS_TOLERANCE: float = 0.01
    MORNING_DELIVERY_MAX_HOURS: float = 2.0

    # =========================================================================
    # RESOLUTION
    # =========================================================================
    IMPACT_WEIGHT_HOURS: float = 20.0
    IMPACT_WEIGHT_TASKS: float = 15.0
    IMPACT_WEIGHT_TRANSLATOR_CHANGE: float = 15.0
    IMPACT_WEIGHT_DUE_DATE_RISK: float = 30.0
    IMPACT_WEIGHT_FRAGMENTATION: float = 20.0
    MAX_REASSIGNMENT_CANDIDATES: int = 3
    ALWAYS_OFFER_REASSIGNMENT: bool = True
    CANDIDATE_WORKERS: int = 4

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================
    METRICS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()
