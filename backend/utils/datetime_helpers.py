"""Datetime utility functions for timezone handling."""
from datetime import datetime, UTC
from typing import Optional


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware in UTC.

    SQLite hands back naive datetimes for DateTime(timezone=True) columns, so
    every deadline comparison normalizes through here first.

    Example:
        >>> naive_dt = datetime(2025, 1, 1, 12, 0, 0)
        >>> ensure_utc(naive_dt).tzinfo == UTC
        True

        >>> ensure_utc(None) is None
        True
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def has_elapsed(deadline: Optional[datetime], now: datetime) -> bool:
    """Return True when a deadline is set and ``now`` is at or past it."""
    deadline = ensure_utc(deadline)
    if deadline is None:
        return False
    return ensure_utc(now) >= deadline
