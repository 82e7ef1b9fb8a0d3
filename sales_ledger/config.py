"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Sales Ledger"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./sales_ledger.db"
    )

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Deduplication
    # Two events for the same client within this window can be the
    # same booking recorded twice.
    FUZZY_MATCH_WINDOW_HOURS: float = float(
        os.getenv("FUZZY_MATCH_WINDOW_HOURS", "2")
    )
    # Creation times closer than this indicate a write race.
    RACE_WINDOW_SECONDS: float = float(os.getenv("RACE_WINDOW_SECONDS", "3"))
    IDENTITY_LOCK_TTL_MS: int = int(os.getenv("IDENTITY_LOCK_TTL_MS", "5000"))
    IMPLICIT_DISCOUNT_THRESHOLD_PERCENT: float = float(
        os.getenv("IMPLICIT_DISCOUNT_THRESHOLD_PERCENT", "1")
    )
    BOOTSTRAP_CLEANUP: bool = (
        os.getenv("BOOTSTRAP_CLEANUP", "true").lower() == "true"
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls. This avoids reading
    environment variables repeatedly.
    """
    return Settings()
