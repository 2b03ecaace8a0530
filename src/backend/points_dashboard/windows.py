from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo

ONE_DAY = timedelta(days=1)


def normalize_datetime(dt: datetime, tz: tzinfo) -> datetime:
    """
    Naive timestamps are read as local time in ``tz``; aware ones are
    converted to it, so every comparison happens on the same clock.
    """

    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def shift_months(dt: datetime, months: int) -> datetime:
    """
    Move ``dt`` by whole calendar months, clamping the day to the length of
    the target month (March 31st minus one month is February 28th/29th).
    """

    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def day_windows(today: datetime, horizon_days: int) -> Iterator[Tuple[datetime, datetime]]:
    """
    Yield ``horizon_days`` half-open day windows, oldest first, the last one
    starting at ``today``.
    """

    for offset in range(horizon_days - 1, -1, -1):
        day_start = today - timedelta(days=offset)
        yield day_start, day_start + ONE_DAY


@dataclass(frozen=True)
class DateRanges:
    """
    Named window starts shared by every role pipeline. All named windows end
    at ``now`` (exclusive).
    """

    now: datetime
    today: datetime
    week_ago: datetime
    month_ago: datetime
    thirty_days_ago: datetime

    @classmethod
    def from_now(cls, now: datetime, tz: Optional[tzinfo] = None) -> "DateRanges":
        tz = tz or ZoneInfo("UTC")
        local_now = normalize_datetime(now, tz)
        today = start_of_day(local_now)
        return cls(
            now=local_now,
            today=today,
            week_ago=today - timedelta(days=7),
            month_ago=shift_months(today, -1),
            thirty_days_ago=today - timedelta(days=30),
        )

    @property
    def tz(self) -> tzinfo:
        return self.now.tzinfo  # type: ignore[return-value]

    @property
    def today_date(self) -> date:
        return self.today.date()
