"""
Centralized datetime utilities for chatcore

Ensures consistent timezone handling across the application.
All timestamps are stored and transmitted as UTC with explicit timezone indicators.
"""

from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of datetime.utcnow() to ensure timezone awareness.

    Returns:
        datetime: Current time in UTC with timezone info

    Example:
        >>> now = utc_now()
        >>> now.tzinfo  # timezone.utc
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Ensure datetime is UTC timezone-aware.

    Converts naive datetime (assumed to be UTC) to timezone-aware UTC.
    If datetime is already timezone-aware, converts to UTC.

    Args:
        dt: Datetime object (naive or aware) or None

    Returns:
        datetime | None: UTC timezone-aware datetime or None

    Example:
        >>> naive_dt = datetime(2025, 12, 16, 11, 30)  # Naive
        >>> aware_dt = ensure_utc(naive_dt)
        >>> aware_dt.tzinfo  # timezone.utc
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive datetime - assume UTC
        return dt.replace(tzinfo=timezone.utc)

    # Already aware - convert to UTC
    return dt.astimezone(timezone.utc)


def to_epoch_millis(dt: datetime) -> int:
    """
    Convert datetime to integer milliseconds since the Unix epoch.

    This is the score used by conversation indexes and the ``before``
    pagination cursor. Naive datetimes are treated as UTC.

    Args:
        dt: Datetime object

    Returns:
        int: Milliseconds since 1970-01-01T00:00:00Z

    Example:
        >>> to_epoch_millis(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc))
        1000
    """
    utc_dt = ensure_utc(dt)
    delta = utc_dt - EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_millis(millis: int) -> datetime:
    """
    Convert epoch milliseconds to a UTC timezone-aware datetime.

    Args:
        millis: Milliseconds since the Unix epoch

    Returns:
        datetime: UTC timezone-aware datetime
    """
    return EPOCH + timedelta(milliseconds=millis)
