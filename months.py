import calendar
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from config import get_timezone


def local_today() -> date:
    return datetime.now(get_timezone()).date()


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(base: date, months: int) -> date:
    """Shift ``base`` by ``months``, clamping the day to the target month's end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


@dataclass(frozen=True, order=True)
class Month:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month out of range: {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"Year out of range: {self.year}")

    @classmethod
    def parse(cls, value: str) -> "Month":
        try:
            year_part, month_part = value.strip().split("-")
            return cls(int(year_part), int(month_part))
        except ValueError as exc:
            raise ValueError(f"Invalid month {value!r}, expected YYYY-MM") from exc

    @classmethod
    def of(cls, value: date) -> "Month":
        return cls(value.year, value.month)

    @classmethod
    def current(cls, *, today: Optional[date] = None) -> "Month":
        return cls.of(today or local_today())

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, days_in_month(self.year, self.month))

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month

    def shift(self, count: int) -> "Month":
        return Month.of(add_months(self.start, count))

    def next(self) -> "Month":
        return self.shift(1)

    def previous(self) -> "Month":
        return self.shift(-1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"
