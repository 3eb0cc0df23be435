"""
Universalis Tracker - Duration Formatting

Human-readable refresh intervals for the stats endpoint, e.g. "60s (1 minute)".
"""

from __future__ import annotations

from datetime import timedelta

_UNITS = (
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def humanize_interval(interval: timedelta) -> str:
    """
    Format an interval as raw seconds plus its largest whole unit.

    Examples:
        >>> humanize_interval(timedelta(minutes=1))
        '60s (1 minute)'
        >>> humanize_interval(timedelta(hours=36))
        '129600s (1.5 days)'
    """
    seconds = interval.total_seconds()
    for unit, size in _UNITS:
        if seconds >= size:
            amount = round(seconds / size, 2)
            text = f"{amount:g}"
            plural = "" if amount == 1 else "s"
            return f"{int(seconds)}s ({text} {unit}{plural})"
    return f"{int(seconds)}s"
