from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def label(self) -> str:
        return self.start.strftime("%B %Y")


def local_now(timezone: str) -> datetime:
    """Wall-clock time in ``timezone``, returned naive like the stored timestamps."""
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def this_month(today: date) -> Period:
    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return Period("this_month", first, next_month - date.resolution)


def month_to_date(today: date) -> Period:
    return Period("month_to_date", today.replace(day=1), today)


def last_month(today: Optional[date] = None) -> Period:
    today = today or date.today()
    first_this = today.replace(day=1)
    last_month_end = first_this - date.resolution
    last_month_start = last_month_end.replace(day=1)
    return Period("last_month", last_month_start, last_month_end)


def same_month(a: datetime, b: datetime) -> bool:
    return a.year == b.year and a.month == b.month
