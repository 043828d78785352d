"""
Settings Configuration

Centralized runtime settings for the event scoring backend.
All settings are loaded from environment variables (a local .env is honoured).
"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on bad input."""
    raw: Optional[str] = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """
    Runtime settings for the application.

    To add a new setting:
    1. Add it here as a class attribute
    2. Load it from an environment variable
    3. Read it through the `settings` singleton
    """

    # Persistence
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./event_scoring.db")
    SQL_ECHO: bool = get_bool_env('SQL_ECHO', False)

    # Assignment cache (seconds); list, judge and category views share it
    ASSIGNMENT_CACHE_TTL_SECONDS: int = get_int_env('ASSIGNMENT_CACHE_TTL_SECONDS', 900)

    # Bulk executor defaults
    BULK_BATCH_SIZE: int = get_int_env('BULK_BATCH_SIZE', 10)
    BULK_CONTINUE_ON_ERROR: bool = get_bool_env('BULK_CONTINUE_ON_ERROR', True)

    # CSV uploads
    CSV_MAX_UPLOAD_BYTES: int = get_int_env('CSV_MAX_UPLOAD_BYTES', 5 * 1024 * 1024)


# Singleton instance for easy importing
settings = Settings()
