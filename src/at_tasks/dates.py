"""Date helpers shared by the store, recurrence and repository."""

from __future__ import annotations

import datetime as dt

ISO_DATE = "%Y-%m-%d"


def today(now: dt.datetime | None = None) -> str:
    return (now or dt.datetime.now()).date().isoformat()


def parse_date(value: str) -> dt.date:
    """Parse ``YYYY-MM-DD`` or ``YYYY-MM-DDTHH:MM`` (time ignored)."""
    return dt.datetime.strptime(value.split("T", 1)[0], ISO_DATE).date()


def add_days(value: str, days: int) -> str:
    return (parse_date(value) + dt.timedelta(days=days)).isoformat()


def diff_days(start: str, end: str) -> int:
    return (parse_date(end) - parse_date(start)).days


def shift_date_string(value: str, days: int) -> str:
    """Shift the date part of ``value`` by ``days`` and keep any ``THH:MM`` suffix."""
    date_part, sep, time_part = value.partition("T")
    shifted = add_days(date_part, days)
    return f"{shifted}T{time_part}" if sep else shifted


def hour_of(time_value: str) -> int:
    return int(time_value.split(":", 1)[0])


def visual_date_of_now(start_hour: int, now: dt.datetime | None = None) -> str:
    """The calendar day that "today" means when a day begins at ``start_hour``."""
    current = now or dt.datetime.now()
    if current.hour < start_hour:
        current -= dt.timedelta(days=1)
    return current.date().isoformat()


def visual_start_date(start_date: str, start_time: str | None, start_hour: int) -> str:
    if not start_time:
        return start_date
    if hour_of(start_time) < start_hour:
        return add_days(start_date, -1)
    return start_date
