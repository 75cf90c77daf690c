"""Datetime parsing: lax remote input -> aware UTC datetimes."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import pendulum

logger = logging.getLogger(__name__)


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware UTC datetime.

    Accepts ISO 8601 variants such as:
    - 2024-03-01T12:30:45.123456Z
    - 2024-03-01T12:30:45+02:00
    - 2024-03-01 12:30
    - 2024-03-01

    Missing timezone defaults to default_tz.
    Missing time components default to zeros.
    Strings without a calendar date, such as times or durations, raise ValueError.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value.astimezone(UTC)

    value_str = value.strip()

    parsed = pendulum.parse(value_str, tz=default_tz, strict=False, exact=True)
    if isinstance(parsed, pendulum.DateTime):
        return parsed.astimezone(UTC)
    if isinstance(parsed, pendulum.Date):
        return pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=default_tz).astimezone(
            UTC
        )
    # Time, Duration and Interval results carry no calendar date
    msg = f"Not a date or datetime: {value_str!r}"
    raise ValueError(msg)


def parse_optional_datetime(value: str | datetime | None) -> datetime | None:
    """Parse a remote timestamp, returning None when absent or unparseable."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        return parse_datetime(value)
    except (ValueError, TypeError, OverflowError) as exc:
        logger.debug("Ignoring unparseable timestamp %r: %s", value, exc)
        return None


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)
