"""Calendar arithmetic shared by the vesting, tax and timeline engines."""

import calendar
from datetime import date


def add_months(start: date, months: int) -> date:
    """Shift a date by whole months, clamping to the last day of the target month.

    Jan 31 + 1 month = Feb 28 (or Feb 29 in a leap year).
    """
    month_index = start.year * 12 + (start.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_years(start: date, years: int) -> date:
    """Shift a date by whole calendar years. Feb 29 maps to Feb 28 in non-leap years."""
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        return start.replace(year=start.year + years, day=28)


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def iter_months(first: date, last: date):
    """Yield the first day of every month from first's month to last's month inclusive."""
    current = month_start(first)
    stop = month_start(last)
    while current <= stop:
        yield current
        current = add_months(current, 1)
