from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class DateRange:
    """Half-open range of calendar days: ``start <= d < end``."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("Start date must not be after end date")

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day < self.end

    def days(self) -> Iterator[date]:
        current = self.start
        while current < self.end:
            yield current
            current += timedelta(days=1)


def local_today(timezone_name: Optional[str] = None) -> date:
    tz = ZoneInfo(timezone_name or get_settings().timezone)
    return datetime.now(tz).date()


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def shift_month(month: date, months: int) -> date:
    total_months = month.month - 1 + months
    year = month.year + total_months // 12
    return date(year, total_months % 12 + 1, 1)


def month_range(month: date) -> DateRange:
    first = month_start(month)
    return DateRange(first, shift_month(first, 1))


def trailing_months(
    newest: date, *, limit: Optional[int] = None
) -> Iterator[date]:
    """Yield month keys from ``newest`` backwards, at most ``limit`` of them."""
    current = month_start(newest)
    produced = 0
    while limit is None or produced < limit:
        yield current
        produced += 1
        current = shift_month(current, -1)


def order_window(today: Optional[date] = None) -> DateRange:
    # today up to and including the Friday two weeks ahead
    today = today or local_today()
    days_to_friday = (4 - today.weekday()) % 7
    return DateRange(today, today + timedelta(days=14 + days_to_friday + 1))
