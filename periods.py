import calendar
from dataclasses import dataclass
from datetime import date
from typing import Optional


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


@dataclass(frozen=True, order=True)
class MonthPeriod:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError("Month must be between 1 and 12")
        if not date.min.year <= self.year <= date.max.year:
            raise ValueError(
                f"Year must be between {date.min.year} and {date.max.year}"
            )

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, days_in_month(self.year, self.month))

    @property
    def slug(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def days(self) -> list[date]:
        return [
            date(self.year, self.month, day)
            for day in range(1, days_in_month(self.year, self.month) + 1)
        ]

    def next(self) -> "MonthPeriod":
        if self.month == 12:
            return MonthPeriod(self.year + 1, 1)
        return MonthPeriod(self.year, self.month + 1)

    @classmethod
    def containing(cls, day: date) -> "MonthPeriod":
        return cls(day.year, day.month)


def resolve_month(
    year: Optional[int],
    month: Optional[int],
    *,
    today: date,
) -> MonthPeriod:
    """Fill a missing year/month from ``today``; both given wins outright."""
    return MonthPeriod(
        year if year is not None else today.year,
        month if month is not None else today.month,
    )


def is_month_past(period: MonthPeriod, *, today: date) -> bool:
    """True when ``period`` is strictly before the month containing today."""
    return period < MonthPeriod.containing(today)


def is_current_month(period: MonthPeriod, *, today: date) -> bool:
    return period == MonthPeriod.containing(today)
