"""
Business calendar engine.

US federal holidays (fixed-date, nth-weekday and last-weekday rules),
business-day membership and Eastern-time date helpers.

No observed-date shifting: a fixed holiday that falls on a weekend is
not moved to the adjacent Friday or Monday.
"""

import calendar
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Dict, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from fulfillment_metrics.config.constants import EASTERN_TIMEZONE

EASTERN_TZ = ZoneInfo(EASTERN_TIMEZONE)

# Python weekday numbers
MONDAY = 0
THURSDAY = 3
SATURDAY = 5
SUNDAY = 6

DateLike = Union[date, datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    """Return the nth occurrence of weekday in a month (e.g. 3rd Monday)."""
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + (n - 1) * 7)


def last_weekday(year: int, month: int, weekday: int) -> date:
    """Return the last occurrence of weekday in a month (e.g. last Monday of May)."""
    last = date(year, month, calendar.monthrange(year, month)[1])
    offset = (last.weekday() - weekday) % 7
    return last - timedelta(days=offset)


@lru_cache(maxsize=32)
def federal_holidays(year: int) -> Dict[date, str]:
    """
    US federal holidays for a given year.

    Args:
        year: Calendar year

    Returns:
        Dictionary mapping date to holiday name
    """
    return {
        date(year, 1, 1): "New Year's Day",
        nth_weekday(year, 1, MONDAY, 3): "Martin Luther King Jr. Day",
        nth_weekday(year, 2, MONDAY, 3): "Presidents' Day",
        last_weekday(year, 5, MONDAY): "Memorial Day",
        date(year, 6, 19): "Juneteenth",
        date(year, 7, 4): "Independence Day",
        nth_weekday(year, 9, MONDAY, 1): "Labor Day",
        nth_weekday(year, 10, MONDAY, 2): "Columbus Day",
        date(year, 11, 11): "Veterans Day",
        nth_weekday(year, 11, THURSDAY, 4): "Thanksgiving Day",
        date(year, 12, 25): "Christmas Day",
    }


def _as_date(day: DateLike) -> date:
    if isinstance(day, datetime):
        return day.date()
    return day


def is_federal_holiday(day: DateLike) -> bool:
    """Check whether a calendar date is a US federal holiday."""
    day = _as_date(day)
    return day in federal_holidays(day.year)


def holiday_name(day: DateLike) -> Optional[str]:
    """Name of the holiday falling on day, or None."""
    day = _as_date(day)
    return federal_holidays(day.year).get(day)


def is_weekend(day: DateLike) -> bool:
    return _as_date(day).weekday() in (SATURDAY, SUNDAY)


def is_business_day(day: DateLike) -> bool:
    """A weekday that is not a federal holiday."""
    if is_weekend(day):
        return False
    return not is_federal_holiday(day)


def to_eastern(moment: datetime) -> datetime:
    """Convert a datetime to Eastern time. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(EASTERN_TZ)


def eastern_date(moment: datetime) -> date:
    """Eastern calendar date of a point in time."""
    return to_eastern(moment).date()


def is_dst(moment: datetime) -> bool:
    """Whether Eastern daylight-saving time is in effect at moment."""
    return bool(to_eastern(moment).dst())


def eastern_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Start and end (inclusive, microsecond precision) of an Eastern day, in UTC."""
    start = datetime(day.year, day.month, day.day, tzinfo=EASTERN_TZ)
    end = start.replace(hour=23, minute=59, second=59, microsecond=999999)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def recent_business_days(today: date, count: int, max_days_back: int) -> List[date]:
    """
    Collect business days walking backward from yesterday.

    Today is never included. The walk stops once count business days are
    found or max_days_back calendar days have been examined.

    Returns:
        Business days in ascending order (oldest first)
    """
    days: List[date] = []
    days_back = 1
    while len(days) < count and days_back < max_days_back:
        candidate = today - timedelta(days=days_back)
        if is_business_day(candidate):
            days.append(candidate)
        days_back += 1

    days.reverse()
    return days
