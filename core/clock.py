"""
UTC time helpers.

Timestamps are stored as naive UTC datetimes so that values round-trip the
same way on PostgreSQL and SQLite.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC"""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Safely parse an ISO-8601 value into naive UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_naive_utc(value)
    try:
        return as_naive_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string with an explicit UTC offset"""
    if value is None:
        return None
    return as_naive_utc(value).replace(tzinfo=timezone.utc).isoformat()
