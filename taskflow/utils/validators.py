"""
Validators
==========

Field validation shared by the API schemas and the offline client.

Each validator returns the normalised value or raises ``ValueError``, so
it can be used directly inside Pydantic ``field_validator`` hooks.
"""

import re
from datetime import time
from typing import Optional

TIME_REGEX = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

TITLE_MAX_LENGTH = 200


def validate_title(value: str) -> str:
    """
    Trim and validate a task title.

    Raises:
        ValueError: If the title is empty after trimming or too long
    """
    title = (value or "").strip()
    if not title:
        raise ValueError("Title cannot be empty.")
    if len(title) > TITLE_MAX_LENGTH:
        raise ValueError(f"Title must be at most {TITLE_MAX_LENGTH} characters.")
    return title


def normalize_description(value: Optional[str]) -> Optional[str]:
    """Trim a description; blank descriptions are stored as ``None``."""
    if value is None:
        return None
    description = value.strip()
    return description or None


def validate_due_time(value: str) -> str:
    """
    Validate an ``HH:MM`` 24-hour time string.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    due_time = (value or "").strip()
    if not TIME_REGEX.match(due_time):
        raise ValueError("Invalid due time value.")
    return due_time


def parse_time_of_day(value: Optional[str]) -> Optional[time]:
    """Return the ``time`` for a valid ``HH:MM`` string, else ``None``."""
    if not isinstance(value, str):
        return None
    match = TIME_REGEX.match(value.strip())
    if match is None:
        return None
    return time(int(match.group(1)), int(match.group(2)))
