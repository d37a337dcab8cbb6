"""Fiscal billing period resolution."""

from __future__ import annotations

import re
from calendar import monthrange
from dataclasses import dataclass
from datetime import date

from .errors import PaymentValidationError

VALID_PERIOD_PATTERN = re.compile(r"^\d{4}-\d{2}$")


def _validate_month(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1 or value > 12:
        raise PaymentValidationError(f"{name} must be an integer between 1 and 12")


@dataclass(frozen=True, order=True)
class FiscalPeriod:
    """A billing period inside a fiscal year.

    Fiscal years are named after the calendar year they end in, so with a July
    start July 2024 belongs to fiscal year 2025. Periods compare by position
    and subtracting two periods gives the number of periods between them.
    """

    fiscal_year: int
    fiscal_month: int

    @property
    def ordinal(self) -> int:
        return self.fiscal_year * 12 + (self.fiscal_month - 1)

    @property
    def key(self) -> str:
        return f"{self.fiscal_year:04d}-{self.fiscal_month:02d}"

    def __sub__(self, other: "FiscalPeriod") -> int:
        if not isinstance(other, FiscalPeriod):
            return NotImplemented
        return self.ordinal - other.ordinal

    def __str__(self) -> str:
        return self.key


def resolve_period(day: date, fiscal_year_start_month: int) -> FiscalPeriod:
    """Map a calendar date to its fiscal period."""

    if not isinstance(day, date):
        raise PaymentValidationError("day must be a date")
    _validate_month(fiscal_year_start_month, "fiscal_year_start_month")

    fiscal_month = day.month - fiscal_year_start_month + 1
    if fiscal_month <= 0:
        fiscal_month += 12

    if fiscal_year_start_month == 1 or day.month < fiscal_year_start_month:
        fiscal_year = day.year
    else:
        fiscal_year = day.year + 1

    return FiscalPeriod(fiscal_year=fiscal_year, fiscal_month=fiscal_month)


def parse_period_key(period_key: str) -> FiscalPeriod:
    """Validate a ``YYYY-MM`` key and return the period it names."""

    if not period_key:
        raise PaymentValidationError("period_key is required")

    sanitized = period_key.strip()
    if not VALID_PERIOD_PATTERN.match(sanitized):
        raise PaymentValidationError("Invalid period key format, expected YYYY-MM")

    year_str, month_str = sanitized.split("-", maxsplit=1)
    month = int(month_str)
    if month < 1 or month > 12:
        raise PaymentValidationError("Invalid period key format, expected YYYY-MM")
    return FiscalPeriod(fiscal_year=int(year_str), fiscal_month=month)


def period_bounds(period: FiscalPeriod, fiscal_year_start_month: int) -> tuple[date, date]:
    """Return the first and last calendar day covered by ``period``."""

    _validate_month(fiscal_year_start_month, "fiscal_year_start_month")

    calendar_month = period.fiscal_month + fiscal_year_start_month - 1
    calendar_year = period.fiscal_year if fiscal_year_start_month == 1 else period.fiscal_year - 1
    if calendar_month > 12:
        calendar_month -= 12
        calendar_year += 1

    starts_on = date(calendar_year, calendar_month, 1)
    _, last_day = monthrange(calendar_year, calendar_month)
    return starts_on, date(calendar_year, calendar_month, last_day)
