"""
Datetime utility functions.
All timestamps handled by the data layer are timezone-aware UTC.
"""

from datetime import datetime, timedelta
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to a naive datetime, or convert an aware one to UTC.

    MongoDB hands back naive datetimes that are implicitly UTC, so every
    datetime read from a collection goes through here before leaving the
    data layer.

    Args:
        value: Datetime (naive or aware) or None

    Returns:
        Aware UTC datetime, or None if value was None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def days_ago(days: int) -> datetime:
    """Return the UTC instant `days` days before now."""
    return utcnow() - timedelta(days=days)


def next_timestamp(previous: Optional[datetime] = None) -> datetime:
    """
    Current UTC instant at millisecond precision, strictly after ``previous``.

    MongoDB stores datetimes to the millisecond, so two writes within the same
    millisecond would otherwise share a timestamp.

    Args:
        previous: Timestamp the result must exceed (naive values are UTC)

    Returns:
        Aware UTC datetime truncated to milliseconds
    """
    now = utcnow()
    now = now.replace(microsecond=now.microsecond // 1000 * 1000)
    previous = ensure_utc(previous)
    if previous is not None and now <= previous:
        return previous + timedelta(milliseconds=1)
    return now
