"""
Date helpers for the archiver.
"""

from datetime import datetime, timezone
from typing import Optional, Union

DATE_FORMATS = ("%Y-%m-%d %H:%M", "%Y-%m-%d")


def parse_date(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a ``yyyy-MM-dd HH:mm`` or ``yyyy-MM-dd`` string as local time

    Returns a timezone-aware datetime, or None when value is empty.
    Raises ValueError for any other format.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.astimezone()

    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).astimezone()
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}': expected 'YYYY-MM-DD HH:MM' or 'YYYY-MM-DD'")


def from_epoch(seconds: Union[int, float, None]) -> datetime:
    """Convert remote ``created_utc`` values to aware UTC datetimes"""
    return datetime.fromtimestamp(float(seconds or 0), tz=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage (ISO 8601, UTC)"""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)
