"""
Time helpers. Timestamps are stored as naive UTC datetimes.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix(value) -> Optional[datetime]:
    """Convert a Stripe unix timestamp (seconds) to a naive UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def add_days(date: datetime, days: int) -> datetime:
    return date + timedelta(days=days)


def is_active(end: Optional[datetime]) -> bool:
    """True while the period end lies in the future."""
    if not end:
        return False
    return end > utcnow()
