"""
Timestamp parser for ledger payment times.

The ledger reports payment time either as epoch seconds or as an ISO-8601
string. Everything is normalized to epoch seconds (float, UTC) so the two
forms compare directly.
"""
from datetime import datetime, timezone
from typing import Optional, Union

from dateutil import parser as dateutil_parser

from config import TIMESTAMP_FORMATS

RawTime = Union[int, float, str, datetime, None]


def normalize_timestamp(value: RawTime) -> Optional[float]:
    """
    Normalize a raw ledger time into epoch seconds.

    Args:
        value: Epoch seconds (number or numeric string), an ISO-8601 string,
               or a datetime object

    Returns:
        Epoch seconds as a float, or None if the value cannot be parsed
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return _as_utc(value).timestamp()

    if isinstance(value, (int, float)):
        return float(value)

    value_str = str(value).strip()

    if not value_str:
        return None

    # Numeric strings are epoch seconds
    try:
        return float(value_str)
    except ValueError:
        pass

    for fmt in TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(value_str, fmt)
            return _as_utc(parsed).timestamp()
        except ValueError:
            continue

    # Fall back to dateutil for anything else ISO-like
    try:
        parsed = dateutil_parser.isoparse(value_str)
    except (ValueError, OverflowError):
        try:
            parsed = dateutil_parser.parse(value_str)
        except (ValueError, OverflowError):
            return None

    return _as_utc(parsed).timestamp()


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_timestamp(value: RawTime, fmt: str = "%d-%b-%Y %H:%M") -> str:
    """
    Format a raw ledger time as a UTC string.

    Args:
        value: Raw time (epoch seconds or ISO-8601)
        fmt: Output format string

    Returns:
        Formatted string, or empty string if the time is unparseable
    """
    seconds = normalize_timestamp(value)
    if seconds is None:
        return ""
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime(fmt)


def to_datetime(value: RawTime) -> Optional[datetime]:
    """Convert a raw ledger time to a naive UTC datetime (for spreadsheets)."""
    seconds = normalize_timestamp(value)
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def describe_age(value: RawTime, now: float) -> str:
    """
    Describe how long ago a ledger time was, e.g. "3 days ago".

    Args:
        value: Raw time
        now: Current epoch seconds

    Returns:
        Human readable age, or empty string if the time is unparseable
    """
    seconds = normalize_timestamp(value)
    if seconds is None:
        return ""

    delta = max(0, int(now - seconds))
    if delta < 60:
        return "just now"

    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if delta >= size:
            count = delta // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"

    return "just now"
