"""
Application Settings

This module provides a centralized settings class that loads environment
variables from the .env file and makes them available throughout the application.
"""

import os
from pathlib import Path
from typing import List
from dotenv import load_dotenv

# Load the .env file from the project root
# The project root is one level up from the argument_coach folder
PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env")


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    """
    Centralized settings class that provides access to all environment variables.
    Usage:
        from argument_coach.settings import settings
        api_key = settings.GEMINI_API_KEY
    """

    # Google Gemini
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    COACH_TEMPERATURE: float = float(os.getenv("COACH_TEMPERATURE", "0.7"))

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # Debug mode
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Monthly coach quota (per user, per UTC month)
    COACH_MONTHLY_QUOTA: int = int(os.getenv("COACH_MONTHLY_QUOTA", "200"))
    COACH_UNLIMITED_ROLES: List[str] = _split_csv(
        os.getenv("COACH_UNLIMITED_ROLES", "administrator")
    )

    # Short-window throttling
    COACH_RATE_LIMIT_MAX_REQUESTS: int = int(os.getenv("COACH_RATE_LIMIT_MAX_REQUESTS", "20"))
    COACH_RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("COACH_RATE_LIMIT_WINDOW_SECONDS", "60"))
    SESSION_CREATE_RATE_LIMIT: int = int(os.getenv("SESSION_CREATE_RATE_LIMIT", "5"))
    FINALIZE_RATE_LIMIT: int = int(os.getenv("FINALIZE_RATE_LIMIT", "10"))

    # Backing store for the quota ledger and rate-limit windows: "sql" or "memory"
    COUNTER_BACKEND: str = os.getenv("COUNTER_BACKEND", "sql").lower()

    CORS_ORIGINS: List[str] = _split_csv(
        os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
    )

    @classmethod
    def validate(cls, require_api_key: bool = True) -> None:
        """Validate that all required environment variables are set."""
        errors = []

        if require_api_key and not cls.GEMINI_API_KEY:
            errors.append("GEMINI_API_KEY is not set in .env file")

        if cls.COUNTER_BACKEND not in ("sql", "memory"):
            errors.append(f"COUNTER_BACKEND must be 'sql' or 'memory', got {cls.COUNTER_BACKEND!r}")

        if cls.COACH_MONTHLY_QUOTA < 0:
            errors.append("COACH_MONTHLY_QUOTA must not be negative")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


# Create a singleton instance for easy import
settings = Settings()
