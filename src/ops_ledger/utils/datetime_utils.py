"""Datetime utilities for timezone-aware UTC timestamps.

Python 3.12+ deprecates datetime.utcnow() in favor of timezone-aware
datetime objects. SQLite does not keep tzinfo, so values read back from the
database are naive; ``to_naive_utc`` normalizes both kinds before comparing.

Usage:
    from ops_ledger.utils.datetime_utils import utc_now

    # For SQLAlchemy Column defaults
    created_at = Column(DateTime, default=utc_now)
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert a datetime to naive UTC for comparisons.

    Aware values are converted to UTC and stripped of tzinfo; naive values
    are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_expired(expiry: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """Return True when ``expiry`` is set and at or before ``now``."""
    if expiry is None:
        return False
    return to_naive_utc(expiry) <= to_naive_utc(now or utc_now())
