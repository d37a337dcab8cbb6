from __future__ import annotations

from datetime import date

import pytest

from backend.dues_ledger.services.errors import PaymentValidationError
from backend.dues_ledger.services.periods import (
    FiscalPeriod,
    parse_period_key,
    period_bounds,
    resolve_period,
)


def test_calendar_fiscal_year_maps_months_directly() -> None:
    period = resolve_period(date(2025, 3, 14), 1)

    assert period == FiscalPeriod(fiscal_year=2025, fiscal_month=3)
    assert period.key == "2025-03"


def test_fiscal_year_is_named_after_the_year_it_ends() -> None:
    assert resolve_period(date(2024, 7, 1), 7).key == "2025-01"
    assert resolve_period(date(2024, 12, 31), 7).key == "2025-06"
    assert resolve_period(date(2025, 6, 30), 7).key == "2025-12"
    assert resolve_period(date(2025, 7, 1), 7).key == "2026-01"


def test_periods_are_ordered_across_fiscal_year_boundaries() -> None:
    june = resolve_period(date(2025, 6, 15), 7)
    july = resolve_period(date(2025, 7, 15), 7)

    assert june < july
    assert july - june == 1
    assert resolve_period(date(2026, 1, 5), 7) - june == 7


@pytest.mark.parametrize("start_month", [0, 13, -1])
def test_invalid_start_month_is_rejected(start_month: int) -> None:
    with pytest.raises(PaymentValidationError):
        resolve_period(date(2025, 1, 1), start_month)


def test_parse_period_key_normalizes_whitespace() -> None:
    assert parse_period_key(" 2025-04 ") == FiscalPeriod(2025, 4)


@pytest.mark.parametrize("raw", ["", "2025-13", "2025-00", "25-01", "2025/01"])
def test_parse_period_key_rejects_malformed_keys(raw: str) -> None:
    with pytest.raises(PaymentValidationError):
        parse_period_key(raw)


def test_period_bounds_follow_the_fiscal_calendar() -> None:
    assert period_bounds(FiscalPeriod(2025, 2), 1) == (date(2025, 2, 1), date(2025, 2, 28))
    assert period_bounds(FiscalPeriod(2025, 1), 7) == (date(2024, 7, 1), date(2024, 7, 31))
    assert period_bounds(FiscalPeriod(2025, 12), 7) == (date(2025, 6, 1), date(2025, 6, 30))
