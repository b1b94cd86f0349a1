"""Time Utilities - UTC timestamps and formatting"""
from datetime import datetime, timezone, timedelta
from typing import Any, Optional
from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (as read back from storage)"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to ISO 8601 string

    Args:
        dt: Datetime object

    Returns:
        ISO formatted string with Z suffix for UTC
    """
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 string to datetime

    Args:
        iso_string: ISO formatted datetime string

    Returns:
        Datetime object in UTC
    """
    return ensure_utc(date_parser.isoparse(iso_string))


def parse_optional_iso(value: Any) -> Optional[datetime]:
    """Parse an optional ISO timestamp coming from an external payload"""
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return parse_iso(str(value))


def add_seconds(dt: datetime, seconds: int) -> datetime:
    """Add seconds to datetime"""
    return dt + timedelta(seconds=seconds)


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Datetime `days` days before `now`"""
    return (now or utc_now()) - timedelta(days=days)
