"""
Helper Functions
================

Common utility functions used across the application.
"""

import logging
from datetime import date, datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from taskflow.utils.validators import parse_time_of_day

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def resolve_timezone(name: Optional[str], fallback: str = "UTC") -> tzinfo:
    """Return the zone for *name*, falling back when it is unknown."""
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r", candidate)
    return timezone.utc


def due_instant(
    due_date: date,
    due_time: Optional[str],
    tz: Optional[tzinfo] = None,
) -> Optional[datetime]:
    """
    Combine a calendar date and ``HH:MM`` into a datetime.

    Returns a naive datetime when *tz* is ``None`` (client local clock),
    and ``None`` when the time of day is invalid.
    """
    time_of_day = parse_time_of_day(due_time)
    if time_of_day is None or not isinstance(due_date, date):
        return None
    return datetime.combine(due_date, time_of_day, tzinfo=tz)
