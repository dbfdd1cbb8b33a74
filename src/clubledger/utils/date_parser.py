"""Date parsing utilities."""

from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser


def parse_date(date_str: str) -> date:
    """Parse a date string into a date object.

    Accepts ISO dates ("2024-01-15"), full ISO timestamps and the free-form
    formats dateutil understands ("15/01/2024" is read day first).

    Args:
        date_str: Date string

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    date_str = date_str.strip()
    try:
        return datetime.fromisoformat(date_str).date()
    except ValueError:
        pass

    try:
        return date_parser.parse(date_str, dayfirst=True).date()
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{date_str}': {e}")


def to_date(value) -> Optional[date]:
    """Coerce a stored date value to a date, or None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_date(str(value))


def to_datetime(value) -> Optional[datetime]:
    """Coerce a stored timestamp to a datetime, or None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return date_parser.parse(str(value))


def days_between(first: date, second: date) -> int:
    """Absolute number of days separating two dates."""
    return abs((first - second).days)
