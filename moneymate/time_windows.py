from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import List


@dataclass(frozen=True)
class MonthWindow:
    """Inclusive wall-clock range covering one calendar month."""

    start: datetime
    end: datetime

    @property
    def key(self) -> str:
        return self.start.strftime("%Y-%m")

    def contains(self, value: datetime) -> bool:
        return self.start <= value <= self.end


def month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_end(value: date) -> date:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return date(value.year, value.month, last_day)


def start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min)


def end_of_day(value: date) -> datetime:
    return datetime.combine(value, time.max)


def as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return start_of_day(value)


def as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def month_window(value: date | datetime, offset: int = 0) -> MonthWindow:
    first = shift_month(as_date(value), offset)
    return MonthWindow(start=start_of_day(first), end=end_of_day(month_end(first)))


def trailing_month_windows(now: date | datetime, months: int) -> List[MonthWindow]:
    """Windows for `months` calendar months ending with the one holding `now`, oldest first."""
    if months < 1:
        raise ValueError("months must be at least 1.")
    return [month_window(now, -offset) for offset in range(months - 1, -1, -1)]
