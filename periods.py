from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class Period:
    """One calendar month, the unit a budget cell is keyed by."""

    year: int
    month: int

    @property
    def key(self) -> str:
        return period_key(self.year, self.month)

    @property
    def month_index(self) -> int:
        return self.month - 1

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        if self.month == 12:
            return date(self.year + 1, 1, 1) - date.resolution
        return date(self.year, self.month + 1, 1) - date.resolution


def period_key(year: int, month: int) -> str:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    if not 1 <= year <= 9999:
        raise ValueError(f"Year must have four digits, got {year}")
    return f"{year:04d}-{month:02d}"


def parse_period_key(key: str) -> Period:
    year_part, sep, month_part = key.partition("-")
    if not sep or len(year_part) != 4 or len(month_part) != 2:
        raise ValueError(f"Period must be formatted as YYYY-MM, got {key!r}")
    if not (year_part.isdigit() and month_part.isdigit()):
        raise ValueError(f"Period must be formatted as YYYY-MM, got {key!r}")
    year = int(year_part)
    month = int(month_part)
    if not 1 <= month <= 12:
        raise ValueError(f"Period month out of range in {key!r}")
    return Period(year, month)


def periods_of_year(year: int) -> list[Period]:
    return [Period(year, month) for month in range(1, 13)]


def period_of(day: date) -> Period:
    return Period(day.year, day.month)
