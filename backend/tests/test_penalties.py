from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from backend.dues_ledger.models import CompoundingMode
from backend.dues_ledger.services.allocation import BillSnapshot
from backend.dues_ledger.services.errors import (
    InsufficientContextError,
    PaymentValidationError,
)
from backend.dues_ledger.services.penalties import (
    PenaltyConfig,
    calculate_penalty,
    count_elapsed_periods,
)

FLAT = PenaltyConfig(grace_days=0, monthly_rate_percent=Decimal("5"))
COMPOUND = PenaltyConfig(
    grace_days=0, monthly_rate_percent=Decimal("5"), compounding=CompoundingMode.COMPOUND
)


def _bill(**overrides) -> BillSnapshot:
    values = {
        "bill_id": "bill-1",
        "period_key": "2025-01",
        "issued_on": date(2024, 12, 15),
        "due_date": date(2025, 1, 1),
        "base_charge_amount": 95000,
    }
    values.update(overrides)
    return BillSnapshot(**values)


def test_flat_penalty_after_three_periods() -> None:
    assert calculate_penalty(_bill(), date(2025, 4, 1), FLAT) == 14250


def test_compound_penalty_after_three_periods() -> None:
    # 95000 * (1.05 ** 3 - 1) = 14974.375
    assert calculate_penalty(_bill(), date(2025, 4, 1), COMPOUND) == 14974


def test_no_penalty_inside_grace_period() -> None:
    config = PenaltyConfig(grace_days=10, monthly_rate_percent=Decimal("5"))

    assert calculate_penalty(_bill(), date(2025, 1, 11), config) == 0
    assert calculate_penalty(_bill(), date(2025, 2, 10), config) == 0
    assert calculate_penalty(_bill(), date(2025, 2, 11), config) == 4750


def test_partial_period_does_not_count() -> None:
    due = date(2025, 1, 20)

    assert count_elapsed_periods(due, date(2025, 2, 19), 0) == 0
    assert count_elapsed_periods(due, date(2025, 2, 20), 0) == 1
    assert count_elapsed_periods(due, date(2025, 4, 19), 0) == 2


def test_penalty_is_idempotent_for_the_same_reference_date() -> None:
    bill = _bill()
    reference = date(2025, 9, 3)

    assert calculate_penalty(bill, reference, FLAT) == calculate_penalty(bill, reference, FLAT)


def test_penalty_ignores_previously_stored_penalty() -> None:
    fresh = _bill()
    stale = _bill(penalty_amount=99999)

    assert calculate_penalty(stale, date(2025, 4, 1), FLAT) == calculate_penalty(
        fresh, date(2025, 4, 1), FLAT
    )


def test_half_up_rounding() -> None:
    bill = _bill(base_charge_amount=10)
    config = PenaltyConfig(grace_days=0, monthly_rate_percent=Decimal("5"))

    # 10 * 0.05 = 0.5 rounds up to 1
    assert calculate_penalty(bill, date(2025, 2, 1), config) == 1


def test_reference_before_issue_date_is_insufficient_context() -> None:
    with pytest.raises(InsufficientContextError):
        calculate_penalty(_bill(), date(2024, 12, 1), FLAT)


def test_negative_configuration_is_rejected() -> None:
    with pytest.raises(PaymentValidationError):
        PenaltyConfig(grace_days=-1, monthly_rate_percent=Decimal("5"))
    with pytest.raises(PaymentValidationError):
        PenaltyConfig(grace_days=0, monthly_rate_percent=Decimal("-1"))


def test_month_end_reaches_a_later_grace_day() -> None:
    due = date(2025, 1, 31)

    assert count_elapsed_periods(due, date(2025, 2, 27), 0) == 0
    assert count_elapsed_periods(due, date(2025, 2, 28), 0) == 1
    assert count_elapsed_periods(due, date(2025, 3, 30), 0) == 1
    assert count_elapsed_periods(due, date(2025, 3, 31), 0) == 2
    assert count_elapsed_periods(date(2024, 1, 30), date(2024, 2, 29), 0) == 1
