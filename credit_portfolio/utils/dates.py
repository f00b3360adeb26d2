"""
Date helpers shared by models and services
"""

from datetime import datetime, date, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from databases without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[Union[datetime, date]]) -> Optional[str]:
    """ISO-8601 string for API responses, keeping UTC explicit."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value.isoformat()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO date or datetime string from a query parameter."""
    if not value:
        return None
    cleaned = value.strip().replace('Z', '+00:00')
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        parsed = datetime.strptime(cleaned[:10], '%Y-%m-%d')
    return as_utc(parsed)


def current_financial_year(today: Optional[date] = None) -> str:
    """
    Indian financial year (April to March) in YYYY-YY form.

    Args:
        today: Reference date, defaults to the current UTC date

    Returns:
        Financial year string, e.g. '2025-26'
    """
    today = today or utcnow().date()
    start_year = today.year if today.month >= 4 else today.year - 1
    return f"{start_year}-{str(start_year + 1)[-2:]}"


def parse_filing_date(value: Optional[str]) -> Optional[date]:
    """Parse a DD-MM-YYYY filing date; '-' and blanks mean not filed."""
    if not value or value.strip() == '-':
        return None
    try:
        return datetime.strptime(value.strip(), '%d-%m-%Y').date()
    except ValueError:
        return None
