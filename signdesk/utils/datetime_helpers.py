"""
Datetime formatting utilities
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC now; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_datetime_to_iso(dt: Optional[datetime]) -> Optional[str]:
    """
    Convert datetime to ISO format with UTC timezone indicator

    Args:
        dt: datetime object or None

    Returns:
        ISO string with 'Z' suffix (e.g., "2025-01-09T10:30:00Z") or None
    """
    if dt is None:
        return None

    # Format as ISO with 'Z' to indicate UTC
    return dt.strftime('%Y-%m-%dT%H:%M:%SZ')


def format_date_se(dt) -> str:
    """Swedish short date (YYYY-MM-DD) as printed on agreements and emails."""
    if dt is None:
        return ""
    return dt.strftime('%Y-%m-%d')
