"""
Time arithmetic for the dose tracker.

No I/O. Just:
- Parsing of user/store supplied instants into aware datetimes
- Elapsed time between two instants, in fractional hours
- Display helpers (time zones only matter here, never in the math)
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600.0

DATE_TIME_FORMAT = "%m/%d/%Y, %I:%M %p"
TIME_FORMAT = "%I:%M %p"
INVALID_DATE = "Invalid Date"


def parse_instant(value: Any, default_tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """
    Convert a datetime-like value into an aware datetime.

    Accepts datetime / date objects, ISO-8601 strings (a trailing "Z" is
    understood) and POSIX timestamps in seconds. Naive values are taken to
    be in `default_tz`.

    Returns None if the value cannot be represented as an instant.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text[-1] in "Zz":
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=default_tz)
    return dt


def hours_between(a: Any, b: Any) -> float:
    """
    Absolute elapsed time between two instants, in hours.

    The difference is taken on absolute (UTC) instants, so the result does
    not depend on the zone either value is expressed in. If either value
    cannot be parsed, a warning is logged and 0.0 is returned.
    """
    start = parse_instant(a)
    end = parse_instant(b)
    if start is None or end is None:
        logger.warning(
            "Invalid instant passed to hours_between: %r (valid=%s), %r (valid=%s)",
            a,
            start is not None,
            b,
            end is not None,
        )
        return 0.0
    return abs((end - start).total_seconds()) / SECONDS_PER_HOUR


def to_utc_iso(dt: datetime) -> str:
    """Canonical ISO-8601 representation (UTC) used when persisting events."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


# --- Display helpers ---------------------------------------------------------


def is_valid_time_zone(name: Optional[str]) -> bool:
    """Return True if `name` is a known IANA time zone."""
    if not name or not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_time_zone(name: Optional[str]) -> tzinfo:
    """
    Look up an IANA zone by name, falling back to UTC (with a warning)
    when the name is missing or unknown.
    """
    if is_valid_time_zone(name):
        return ZoneInfo(name)  # type: ignore[arg-type]
    if name:
        logger.warning("Unknown time zone %r; using UTC", name)
    return timezone.utc


def format_date_time(value: Any, tz: tzinfo = timezone.utc) -> str:
    """
    Format an instant as e.g. "03/14/2025, 08:30 AM" in the given zone.

    Unparseable input yields "Invalid Date" rather than an exception.
    """
    dt = parse_instant(value)
    if dt is None:
        logger.warning("Invalid value for format_date_time: %r", value)
        return INVALID_DATE
    return dt.astimezone(tz).strftime(DATE_TIME_FORMAT)


def format_time_offset(hours: float, now: datetime, tz: tzinfo = timezone.utc) -> str:
    """
    Wall-clock time `hours` after `now` (negative offsets are in the past),
    e.g. "03:45 PM".
    """
    return (now + timedelta(hours=hours)).astimezone(tz).strftime(TIME_FORMAT)
