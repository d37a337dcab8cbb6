from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from backend.dues_ledger.models import (
    AllocationTargetKind,
    BillCategory,
    BillStatus,
    CreditDrawOrder,
)
from backend.dues_ledger.services.allocation import BillSnapshot, plan_allocation
from backend.dues_ledger.services.errors import InsufficientInputError
from backend.dues_ledger.services.penalties import PenaltyConfig

CONFIG = PenaltyConfig(grace_days=0, monthly_rate_percent=Decimal("5"))
PAID_ON = date(2025, 4, 1)

PENALTY = AllocationTargetKind.PENALTY
BASE = AllocationTargetKind.BASE
CREDIT = AllocationTargetKind.CREDIT


def _bill(bill_id: str = "jan", **overrides) -> BillSnapshot:
    values = {
        "bill_id": bill_id,
        "period_key": "2025-01",
        "issued_on": date(2024, 12, 15),
        "due_date": date(2025, 1, 1),
        "base_charge_amount": 95000,
    }
    values.update(overrides)
    return BillSnapshot(**values)


def _summary(plan) -> list[tuple]:
    return [(line.target_kind, line.amount, line.bill_id) for line in plan.lines]


def test_exact_payment_zeroes_the_bill() -> None:
    plan = plan_allocation([_bill()], 109250, PAID_ON, 0, CONFIG)

    assert _summary(plan) == [(PENALTY, 14250, "jan"), (BASE, 95000, "jan")]
    assert plan.credit_delta == 0
    outcome = plan.outcome_for("jan")
    assert outcome.penalty_after == 14250
    assert outcome.status_after == BillStatus.PAID


def test_overpayment_becomes_credit() -> None:
    plan = plan_allocation([_bill()], 120000, PAID_ON, 0, CONFIG)

    assert _summary(plan) == [
        (PENALTY, 14250, "jan"),
        (BASE, 95000, "jan"),
        (CREDIT, 10750, None),
    ]
    assert plan.credit_balance_after == 10750


def test_underpayment_leaves_bill_partial() -> None:
    plan = plan_allocation([_bill()], 60000, PAID_ON, 0, CONFIG)

    assert _summary(plan) == [(PENALTY, 14250, "jan"), (BASE, 45750, "jan")]
    assert plan.credit_delta == 0
    assert plan.outcome_for("jan").status_after == BillStatus.PARTIAL


def test_penalties_are_settled_before_any_base_charge() -> None:
    bills = [
        _bill("jan"),
        _bill("feb", period_key="2025-02", issued_on=date(2025, 1, 15), due_date=date(2025, 2, 1)),
    ]

    # jan penalty 14250, feb penalty 9500
    plan = plan_allocation(bills, 30000, PAID_ON, 0, CONFIG)

    assert _summary(plan) == [
        (PENALTY, 14250, "jan"),
        (PENALTY, 9500, "feb"),
        (BASE, 6250, "jan"),
    ]
    assert plan.outcome_for("feb").status_after == BillStatus.PARTIAL


def test_later_bills_get_nothing_once_funds_run_out() -> None:
    bills = [
        _bill("feb", period_key="2025-02", issued_on=date(2025, 1, 15), due_date=date(2025, 2, 1)),
        _bill("jan"),
    ]

    plan = plan_allocation(bills, 10000, PAID_ON, 0, CONFIG)

    assert _summary(plan) == [(PENALTY, 10000, "jan")]
    assert [outcome.bill_id for outcome in plan.bill_outcomes] == ["jan"]


def test_existing_credit_is_drawn_after_the_payment() -> None:
    plan = plan_allocation([_bill()], 100000, PAID_ON, 20000, CONFIG)

    assert _summary(plan) == [
        (PENALTY, 14250, "jan"),
        (BASE, 95000, "jan"),
        (CREDIT, -9250, None),
    ]
    assert plan.credit_used == 9250
    assert plan.credit_balance_after == 10750


def test_credit_first_order_consumes_credit_before_the_payment() -> None:
    plan = plan_allocation(
        [_bill()],
        100000,
        PAID_ON,
        20000,
        CONFIG,
        credit_draw_order=CreditDrawOrder.CREDIT_FIRST,
    )

    assert plan.credit_used == 20000
    assert plan.credit_created == 10750
    assert plan.credit_delta == -9250
    assert plan.allocated_total == 100000


def test_allocation_lines_always_sum_to_the_payment() -> None:
    bills = [
        _bill("jan"),
        _bill("feb", period_key="2025-02", issued_on=date(2025, 1, 15), due_date=date(2025, 2, 1)),
        _bill("mar", period_key="2025-03", issued_on=date(2025, 2, 15), due_date=date(2025, 3, 1)),
    ]

    for amount in (1, 9999, 14250, 50000, 123456, 400000):
        for credit in (0, 5000, 500000):
            plan = plan_allocation(bills, amount, PAID_ON, credit, CONFIG)
            assert plan.allocated_total == amount
            assert all(line.amount > 0 for line in plan.lines if line.target_kind != CREDIT)
            assert sum(1 for line in plan.lines if line.target_kind == CREDIT) <= 1


def test_zero_amount_is_a_preview_without_effect() -> None:
    plan = plan_allocation([_bill()], 0, PAID_ON, 50000, CONFIG)

    assert plan.lines == ()
    assert plan.credit_delta == 0
    assert plan.is_zero_effect
    assert plan.recomputed_penalties == {"jan": 14250}


def test_paid_bills_and_future_bills_are_ignored() -> None:
    bills = [
        _bill("old", status=BillStatus.PAID, period_key="2024-12", due_date=date(2024, 12, 1)),
        _bill("jan"),
        _bill("may", period_key="2025-05", issued_on=date(2025, 4, 15), due_date=date(2025, 5, 1)),
    ]

    plan = plan_allocation(bills, 200000, PAID_ON, 0, CONFIG)

    assert {line.bill_id for line in plan.lines if line.bill_id} == {"jan"}
    assert set(plan.recomputed_penalties) == {"jan"}


def test_penalty_never_drops_below_what_was_already_paid() -> None:
    bill = _bill(penalty_amount=19000, penalty_paid_amount=19000)

    plan = plan_allocation([bill], 95000, date(2025, 2, 1), 0, CONFIG)

    assert plan.recomputed_penalties["jan"] == 19000
    assert _summary(plan) == [(BASE, 95000, "jan")]
    assert plan.outcome_for("jan").status_after == BillStatus.PAID


@pytest.mark.parametrize("amount, credit", [(-1, 0), (100, -1)])
def test_negative_inputs_are_rejected(amount: int, credit: int) -> None:
    with pytest.raises(InsufficientInputError):
        plan_allocation([_bill()], amount, PAID_ON, credit, CONFIG)


def test_non_integer_amounts_are_rejected() -> None:
    with pytest.raises(InsufficientInputError):
        plan_allocation([_bill()], 100.5, PAID_ON, 0, CONFIG)


def test_duplicated_bills_are_rejected() -> None:
    with pytest.raises(InsufficientInputError):
        plan_allocation([_bill(), _bill()], 100, PAID_ON, 0, CONFIG)


def test_each_category_accrues_on_its_own_terms_and_dues_go_first() -> None:
    water_terms = PenaltyConfig(grace_days=10, monthly_rate_percent=Decimal("2"))
    configs = {BillCategory.DUES: CONFIG, BillCategory.WATER: water_terms}
    bills = [
        _bill("a-water", category=BillCategory.WATER, base_charge_amount=20000),
        _bill("jan"),
    ]

    # water grace ends 2025-01-11, so only two periods have run by April 1st
    plan = plan_allocation(bills, 20000, PAID_ON, 0, configs)

    assert plan.recomputed_penalties == {"jan": 14250, "a-water": 800}
    assert _summary(plan) == [
        (PENALTY, 14250, "jan"),
        (PENALTY, 800, "a-water"),
        (BASE, 4950, "jan"),
    ]
    assert [line.category for line in plan.lines] == [
        BillCategory.DUES,
        BillCategory.WATER,
        BillCategory.DUES,
    ]


def test_missing_terms_for_a_category_are_rejected() -> None:
    bills = [_bill("w", category=BillCategory.WATER)]

    with pytest.raises(InsufficientInputError):
        plan_allocation(bills, 100, PAID_ON, 0, {BillCategory.DUES: CONFIG})
