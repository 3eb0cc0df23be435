"""
Universalis Tracker - Activity Classifier

Maps a market snapshot to a refresh tier and a tier to its refresh interval.
Pure functions: no I/O, fully deterministic.

Tier rules (velocity v read from settings.VELOCITY_FIELD):
- no data, or v missing / non-numeric -> cold
- v < COLD_MAX                        -> cold
- COLD_MAX <= v < MILD_MAX            -> mild
- v >= MILD_MAX                       -> hot
"""

from __future__ import annotations

import math
from datetime import timedelta
from typing import Any

import structlog

from src.config import Tier, settings
from src.models.records import MarketSnapshot

logger = structlog.get_logger(__name__)


def _coerce_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def read_velocity(snapshot: MarketSnapshot, field: str | None = None) -> float | None:
    """
    Read the configured velocity field from a snapshot as a float.

    Returns None when the field is absent, the "NA" sentinel, or otherwise
    not a number.
    """
    name = field or settings.VELOCITY_FIELD
    return _coerce_number(getattr(snapshot, name, None))


def classify(
    snapshot: MarketSnapshot | None,
    cold_max: float | None = None,
    mild_max: float | None = None,
    field: str | None = None,
) -> Tier:
    """
    Classify a snapshot into cold / mild / hot.

    Args:
        snapshot: Parsed market snapshot (may be the no-data placeholder).
        cold_max: Velocity below this is cold (default: VELOCITY_COLD_MAX).
        mild_max: Velocity at or above this is hot (default: VELOCITY_MILD_MAX).
        field: Snapshot attribute holding the velocity (default: VELOCITY_FIELD).

    Returns:
        The tier for the snapshot.
    """
    low = cold_max if cold_max is not None else settings.VELOCITY_COLD_MAX
    high = mild_max if mild_max is not None else settings.VELOCITY_MILD_MAX
    if low >= high:
        raise ValueError("cold_max must be less than mild_max")

    if snapshot is None or not snapshot.has_data:
        return Tier.COLD

    velocity = read_velocity(snapshot, field)
    if velocity is None:
        return Tier.COLD

    if velocity < low:
        tier = Tier.COLD
    elif velocity < high:
        tier = Tier.MILD
    else:
        tier = Tier.HOT

    logger.debug(
        "item_classified",
        velocity=velocity,
        cold_max=low,
        mild_max=high,
        tier=tier.value,
    )
    return tier


def interval_for(tier: Tier | str) -> timedelta:
    """Refresh interval for a tier. Unknown tiers get the cold interval."""
    try:
        tier = Tier(tier)
    except ValueError:
        tier = Tier.COLD

    if tier is Tier.HOT:
        return timedelta(seconds=settings.HOT_REFRESH_INTERVAL_SECONDS)
    if tier is Tier.MILD:
        return timedelta(seconds=settings.MILD_REFRESH_INTERVAL_SECONDS)
    return timedelta(seconds=settings.COLD_REFRESH_INTERVAL_SECONDS)
