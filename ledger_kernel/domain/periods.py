"""
BillingPeriod -- a calendar month used as the obligation unit.

Every accrual, every obligation and every ``month_settled`` tag is keyed by a
BillingPeriod rendered as ``"YYYY-MM"``.  Ordering is chronological, which is
the FIFO order used by allocation.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Self

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True, order=True, slots=True)
class BillingPeriod:
    """Calendar month (year, month)."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be 1-12, got {self.month}")
        if not 1900 <= self.year <= 9999:
            raise ValueError(f"Year out of range: {self.year}")

    @classmethod
    def parse(cls, value: "str | BillingPeriod") -> Self:
        """Parse ``"YYYY-MM"``."""
        if isinstance(value, BillingPeriod):
            return value
        match = _PERIOD_RE.match(value.strip())
        if match is None:
            raise ValueError(f"Period must be YYYY-MM, got {value!r}")
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def from_date(cls, value: date) -> Self:
        return cls(value.year, value.month)

    @classmethod
    def span(cls, first: "BillingPeriod", last: "BillingPeriod") -> Iterator["BillingPeriod"]:
        """Yield every period from first to last inclusive."""
        current = first
        while current <= last:
            yield current
            current = current.next()

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    @property
    def end(self) -> date:
        return date(self.year, self.month, self.days_in_month)

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    def next(self) -> "BillingPeriod":
        if self.month == 12:
            return BillingPeriod(self.year + 1, 1)
        return BillingPeriod(self.year, self.month + 1)

    def previous(self) -> "BillingPeriod":
        if self.month == 1:
            return BillingPeriod(self.year - 1, 12)
        return BillingPeriod(self.year, self.month - 1)

    def __str__(self) -> str:
        return self.key
