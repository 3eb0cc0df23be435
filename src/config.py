"""
Universalis Tracker - Configuration & Constants

Every threshold, interval and upstream limit lives here. No hardcoded values
in business logic. All fields are overridable through environment variables
or a local .env file.

Usage:
    from src.config import settings
"""

from __future__ import annotations

from enum import Enum

from pydantic_settings import BaseSettings


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Tier(str, Enum):
    """Refresh urgency derived from trading activity."""
    COLD = "cold"   # velocity < VELOCITY_COLD_MAX
    MILD = "mild"   # VELOCITY_COLD_MAX <= velocity < VELOCITY_MILD_MAX
    HOT = "hot"     # velocity >= VELOCITY_MILD_MAX


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Central configuration for the tracker.

    Loads from environment variables with fallback defaults.
    """

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # -----------------------------------------------------------------------
    # Service
    # -----------------------------------------------------------------------
    WORLD_NAME: str = "China"               # Upstream world / data center selector
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # -----------------------------------------------------------------------
    # Persistence & catalog
    # -----------------------------------------------------------------------
    DATABASE_URL: str = "sqlite+aiosqlite:///data/items.db"
    CATALOG_PATH: str = "data/catalog.json"

    # -----------------------------------------------------------------------
    # Universalis API
    # -----------------------------------------------------------------------
    UNIVERSALIS_BASE_URL: str = "https://universalis.app/api/v2"
    UNIVERSALIS_MAX_ITEMS_PER_CALL: int = 5
    UNIVERSALIS_LISTINGS_LIMIT: int = 5
    UNIVERSALIS_ENTRIES_LIMIT: int = 20
    UNIVERSALIS_ENTRIES_WITHIN_SECONDS: int = 604800   # 7 days of sale history
    UNIVERSALIS_TIMEOUT_SECONDS: float = 30.0

    # -----------------------------------------------------------------------
    # Fetch queue spacing
    # delay before each call = base + uniform(0, jitter)
    # -----------------------------------------------------------------------
    FETCH_BASE_DELAY_SECONDS: float = 1.0
    FETCH_JITTER_MAX_SECONDS: float = 0.5

    # -----------------------------------------------------------------------
    # Classification
    # Velocity = units sold inside the entriesWithin window (see DESIGN.md)
    # -----------------------------------------------------------------------
    VELOCITY_FIELD: str = "units_sold"
    VELOCITY_COLD_MAX: float = 100
    VELOCITY_MILD_MAX: float = 1000

    # -----------------------------------------------------------------------
    # Refresh cadence per tier
    # -----------------------------------------------------------------------
    HOT_REFRESH_INTERVAL_SECONDS: int = 60          # 1 minute
    MILD_REFRESH_INTERVAL_SECONDS: int = 60 * 60    # 1 hour
    COLD_REFRESH_INTERVAL_SECONDS: int = 24 * 60 * 60  # 1 day

    # -----------------------------------------------------------------------
    # Scheduler
    # -----------------------------------------------------------------------
    SCHEDULER_TICK_SECONDS: float = 60


# Singleton instance
settings = Settings()
