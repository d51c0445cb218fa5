"""
Time utilities shared by the stores and the risk aggregator.

SQLite returns naive datetimes even for values written as UTC, so every
comparison against wall-clock time goes through `ensure_utc`.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Make a datetime timezone-aware, assuming naive values are UTC.

    Args:
        dt: Datetime read from storage or supplied by a caller

    Returns:
        Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def age_in_days(dt: datetime, now: datetime | None = None) -> float:
    """
    Fractional number of days elapsed since `dt`.

    Args:
        dt: Reference datetime
        now: Comparison point, defaults to the current time

    Returns:
        Elapsed days, never negative
    """
    reference = ensure_utc(now) if now else utc_now()
    elapsed = (reference - ensure_utc(dt)).total_seconds() / 86400
    return max(0.0, elapsed)


def format_iso8601(dt: datetime) -> str:
    """
    Format a datetime as ISO 8601 string.

    Args:
        dt: The datetime to format

    Returns:
        ISO 8601 formatted string (e.g., "2024-01-15T10:30:00Z")
    """
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")
