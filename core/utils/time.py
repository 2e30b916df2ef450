"""
Time Utilities

Every timestamp in the engine (snapshot timestamps, history points,
``fetchedAt``) is an integer count of milliseconds since the Unix epoch, the
unit the HTTP and channel payloads carry. These helpers produce and convert
such values.
"""

from datetime import datetime, timezone
from typing import Union


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Values above 1e12 are treated as milliseconds.

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

    Raises:
        ValueError: If timestamp is negative or out of range
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def datetime_to_timestamp(dt: datetime, milliseconds: bool = False) -> int:
    """
    Convert a datetime object to Unix timestamp (naive datetimes are taken as UTC).

    Examples:
        >>> dt = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        >>> datetime_to_timestamp(dt, milliseconds=True)
        1704110400000
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    if milliseconds:
        return int(dt.timestamp() * 1000)
    return int(dt.timestamp())


def current_utc_timestamp(milliseconds: bool = False) -> int:
    """Get the current UTC timestamp in seconds or milliseconds."""
    return datetime_to_timestamp(datetime.now(timezone.utc), milliseconds)


def age_seconds(timestamp_ms: int, now_ms: int) -> float:
    """
    Seconds elapsed between a millisecond timestamp and ``now_ms``.

    Example:
        >>> age_seconds(1704110400000, 1704110460000)
        60.0
    """
    return (now_ms - timestamp_ms) / 1000.0
