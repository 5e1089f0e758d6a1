"""
UTC helpers. Timestamps are stored as naive UTC so SQLite and Postgres
compare them the same way.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to naive UTC. Naive input is assumed to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def isoformat_z(value: Optional[datetime]) -> Optional[str]:
    """Serialize a stored timestamp as ISO-8601 with a trailing Z."""
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + "Z"
