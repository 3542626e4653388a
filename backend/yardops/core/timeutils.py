"""
Business-timezone helpers.

Month windows, report day bounds and the timestamps written into notes and
history lines are all computed in the business timezone (America/Chicago by
default) and stored in UTC.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Tuple

import pytz

from yardops.core.config import get_settings

MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def business_tz():
    return pytz.timezone(get_settings().business_timezone)


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def to_business_time(value: datetime) -> datetime:
    """Convert an aware (or naive UTC) datetime to the business timezone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=pytz.UTC)
    return value.astimezone(business_tz())


def local_midnight_utc(day: date) -> datetime:
    """UTC instant of midnight at the start of ``day`` in the business timezone."""
    tz = business_tz()
    local = tz.localize(datetime(day.year, day.month, day.day))
    return local.astimezone(pytz.UTC)


def format_stamp(value: Optional[datetime] = None) -> str:
    """
    Format a timestamp the way notes and history lines show it.

    Example:
        >>> format_stamp(datetime(2025, 10, 3, 19, 5, tzinfo=pytz.UTC))
        '3 Oct, 2025 14:05'
    """
    local = to_business_time(value or utcnow())
    return f"{local.day} {MONTH_ABBREVIATIONS[local.month - 1]}, {local.year} {local:%H:%M}"


def month_number(abbreviation: str) -> int:
    """
    Map a month abbreviation (``Oct``) or full name (``October``) to 1..12.

    Raises:
        ValueError: If the month is not recognised
    """
    key = (abbreviation or "").strip().title()
    if key in MONTH_ABBREVIATIONS:
        return MONTH_ABBREVIATIONS.index(key) + 1
    if key in MONTH_NAMES:
        return MONTH_NAMES.index(key) + 1
    raise ValueError(f"Invalid month: {abbreviation}")


def month_window(year: int, month: int) -> Tuple[datetime, datetime]:
    """
    Half-open UTC window covering a calendar month in the business timezone.

    Example:
        >>> month_window(2025, 10)
        (2025-10-01 05:00:00+00:00, 2025-11-01 05:00:00+00:00)
    """
    start = local_midnight_utc(date(year, month, 1))
    if month == 12:
        end = local_midnight_utc(date(year + 1, 1, 1))
    else:
        end = local_midnight_utc(date(year, month + 1, 1))
    return start, end


def current_month_window() -> Tuple[datetime, datetime]:
    today = to_business_time(utcnow())
    return month_window(today.year, today.month)


def day_window(day: date) -> Tuple[datetime, datetime]:
    """Half-open UTC window covering one business-timezone calendar day."""
    return local_midnight_utc(day), local_midnight_utc(day + timedelta(days=1))


def resolve_window(
    start: Optional[str] = None,
    end: Optional[str] = None,
    month: Optional[str] = None,
    year: Optional[int] = None,
) -> Tuple[datetime, datetime]:
    """
    Resolve the query window for listings and reports.

    Precedence: explicit ``start``/``end`` dates (inclusive calendar days),
    then ``month`` + ``year``, then the current month. Month may be an
    abbreviation or a number.

    Raises:
        ValueError: If a date or month cannot be parsed or start is after end
    """
    if start and end:
        start_day = date.fromisoformat(start[:10])
        end_day = date.fromisoformat(end[:10])
        if start_day > end_day:
            raise ValueError("start must not be after end")
        return local_midnight_utc(start_day), local_midnight_utc(end_day + timedelta(days=1))

    if month and year:
        month_no = int(month) if str(month).isdigit() else month_number(month)
        if not 1 <= month_no <= 12:
            raise ValueError(f"Invalid month: {month}")
        return month_window(int(year), month_no)

    return current_month_window()
