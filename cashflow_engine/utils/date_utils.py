"""Date manipulation utilities"""

import calendar
from datetime import date, timedelta
from typing import List


def generate_date_range(start: date, end: date) -> List[date]:
    """Generate list of dates from start to end (inclusive)"""
    days = (end - start).days + 1
    return [start + timedelta(days=i) for i in range(days)]


def days_between(first: date, second: date) -> int:
    """Absolute number of calendar days separating two dates"""
    return abs((second - first).days)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(year) else 365


def day_of_year(day: date) -> int:
    """1-based ordinal of the day within its year"""
    return day.timetuple().tm_yday


def date_for_day_of_month(year: int, month: int, day: int) -> date:
    """Anchor day in the given month, clamped to the month's last day"""
    return date(year, month, min(day, days_in_month(year, month)))


def date_for_day_of_year(year: int, ordinal: int) -> date:
    """Anchor day-of-year in the given year, clamped to the year's last day"""
    ordinal = min(max(ordinal, 1), days_in_year(year))
    return date(year, 1, 1) + timedelta(days=ordinal - 1)

