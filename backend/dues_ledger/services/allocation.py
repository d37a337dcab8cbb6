"""Deterministic distribution of a payment across a unit's open bills.

Funds always settle penalties before principal: pass A walks the open bills
oldest due date first paying outstanding penalties, pass B walks them again
paying outstanding base charges. Once funds run out allocation stops, so a
later bill never receives money while an earlier obligation is still open.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional, Sequence, Union

from ..models.bill import BillCategory, BillStatus
from ..models.payment import AllocationTargetKind
from ..models.unit import CreditDrawOrder
from .errors import DataIntegrityError, InsufficientInputError
from .penalties import PenaltyConfig, calculate_penalty

LOGGER = logging.getLogger(__name__)

PenaltyConfigs = Union[PenaltyConfig, Mapping[BillCategory, PenaltyConfig]]


def derive_status(paid_amount: int, total_due: int) -> BillStatus:
    """Status implied by how much of a bill's total has been paid."""

    if paid_amount <= 0:
        return BillStatus.PAID if total_due <= 0 else BillStatus.UNPAID
    if paid_amount >= total_due:
        return BillStatus.PAID
    return BillStatus.PARTIAL


@dataclass(frozen=True)
class BillSnapshot:
    """Point-in-time copy of a bill, read inside the planning transaction."""

    bill_id: str
    period_key: str
    issued_on: date
    due_date: date
    base_charge_amount: int
    penalty_amount: int = 0
    penalty_paid_amount: int = 0
    base_paid_amount: int = 0
    status: BillStatus = BillStatus.UNPAID
    category: BillCategory = BillCategory.DUES

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", BillCategory(self.category))

    @property
    def paid_amount(self) -> int:
        return self.penalty_paid_amount + self.base_paid_amount

    @classmethod
    def from_model(cls, bill) -> "BillSnapshot":
        return cls(
            bill_id=str(bill.id),
            period_key=bill.period_key,
            issued_on=bill.issued_on,
            due_date=bill.due_date,
            base_charge_amount=bill.base_charge_amount,
            penalty_amount=bill.penalty_amount or 0,
            penalty_paid_amount=bill.penalty_paid_amount or 0,
            base_paid_amount=bill.base_paid_amount or 0,
            status=BillStatus(bill.status),
            category=BillCategory(bill.category or BillCategory.DUES),
        )


@dataclass(frozen=True)
class AllocationLine:
    """A portion of the payment assigned to one bill target or to credit."""

    target_kind: AllocationTargetKind
    amount: int
    bill_id: Optional[str] = None
    period_key: Optional[str] = None
    category: Optional[BillCategory] = None


@dataclass(frozen=True)
class BillOutcome:
    """State a touched bill will have once the plan is applied."""

    bill_id: str
    period_key: str
    penalty_before: int
    penalty_after: int
    penalty_applied: int
    base_applied: int
    penalty_paid_after: int
    base_paid_after: int
    status_after: BillStatus

    @property
    def paid_amount_after(self) -> int:
        return self.penalty_paid_after + self.base_paid_after


@dataclass(frozen=True)
class AllocationPlan:
    """Transient result of planning; consumed immediately by the ledger."""

    payment_amount: int
    payment_date: date
    credit_balance_before: int
    credit_draw_order: CreditDrawOrder
    lines: tuple[AllocationLine, ...] = ()
    bill_outcomes: tuple[BillOutcome, ...] = ()
    recomputed_penalties: Mapping[str, int] = field(default_factory=dict)
    credit_used: int = 0
    credit_created: int = 0

    @property
    def credit_delta(self) -> int:
        return self.credit_created - self.credit_used

    @property
    def credit_balance_after(self) -> int:
        return self.credit_balance_before + self.credit_delta

    @property
    def allocated_total(self) -> int:
        return sum(line.amount for line in self.lines)

    @property
    def is_zero_effect(self) -> bool:
        return not self.lines and self.credit_delta == 0

    def outcome_for(self, bill_id: str) -> BillOutcome:
        for outcome in self.bill_outcomes:
            if outcome.bill_id == bill_id:
                return outcome
        raise KeyError(bill_id)


class _Funds:
    """Incoming payment and existing credit, drawn in a configured order."""

    def __init__(self, payment: int, credit: int, order: CreditDrawOrder) -> None:
        self.payment_remaining = payment
        self.credit_remaining = credit
        self.credit_used = 0
        self.order = order

    @property
    def total(self) -> int:
        return self.payment_remaining + self.credit_remaining

    def _draw_payment(self, wanted: int) -> int:
        taken = min(wanted, self.payment_remaining)
        self.payment_remaining -= taken
        return taken

    def _draw_credit(self, wanted: int) -> int:
        taken = min(wanted, self.credit_remaining)
        self.credit_remaining -= taken
        self.credit_used += taken
        return taken

    def draw(self, wanted: int) -> int:
        if self.order == CreditDrawOrder.CREDIT_FIRST:
            drawers = (self._draw_credit, self._draw_payment)
        else:
            drawers = (self._draw_payment, self._draw_credit)
        taken = 0
        for drawer in drawers:
            if taken >= wanted:
                break
            taken += drawer(wanted - taken)
        return taken


def _require_minor_units(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InsufficientInputError(f"{name} must be an integer amount of minor units")
    if value < 0:
        raise InsufficientInputError(f"{name} must be non-negative")
    return value


# Dues settle before water when both fall due on the same day.
_CATEGORY_RANK = {BillCategory.DUES: 0, BillCategory.WATER: 1}


def _config_for(bill: BillSnapshot, config: "PenaltyConfigs") -> PenaltyConfig:
    if isinstance(config, PenaltyConfig):
        return config
    try:
        return config[bill.category]
    except KeyError:
        raise InsufficientInputError(
            f"No penalty configuration for {bill.category.value} bill {bill.bill_id}"
        ) from None


def _open_bills(bills: Iterable[BillSnapshot], payment_date: date) -> list[BillSnapshot]:
    seen: set[str] = set()
    candidates: list[BillSnapshot] = []
    for bill in bills:
        if bill.bill_id in seen:
            raise InsufficientInputError(f"Bill {bill.bill_id} was supplied more than once")
        seen.add(bill.bill_id)
        if bill.status == BillStatus.PAID:
            continue
        # A bill issued after the payment date did not exist when the payment
        # was made, so a backdated payment cannot settle it.
        if bill.issued_on > payment_date:
            continue
        candidates.append(bill)
    return sorted(
        candidates,
        key=lambda item: (
            item.due_date,
            _CATEGORY_RANK[item.category],
            item.period_key,
            item.bill_id,
        ),
    )


def plan_allocation(
    bills: Sequence[BillSnapshot],
    payment_amount: int,
    payment_date: date,
    credit_balance: int,
    config: PenaltyConfigs,
    *,
    credit_draw_order: CreditDrawOrder = CreditDrawOrder.PAYMENT_FIRST,
    fiscal_year_start_month: int = 1,
) -> AllocationPlan:
    """Build the allocation plan for a payment received on ``payment_date``.

    ``config`` is either one set of penalty terms for every bill or a mapping
    from bill category to its terms.

    A zero ``payment_amount`` is a preview: penalties are still recomputed but
    the plan moves no money and draws no credit.

    Raises:
        InsufficientInputError: negative amounts, duplicated bills or a bill
            category missing from ``config``.
        InsufficientContextError: propagated from the penalty calculator.
    """

    payment_amount = _require_minor_units(payment_amount, "payment_amount")
    credit_balance = _require_minor_units(credit_balance, "credit_balance")
    if not isinstance(payment_date, date):
        raise InsufficientInputError("payment_date must be a date")

    ordered = _open_bills(bills, payment_date)

    recomputed: dict[str, int] = {}
    outstanding: dict[str, tuple[int, int]] = {}
    for bill in ordered:
        penalty = calculate_penalty(
            bill,
            payment_date,
            _config_for(bill, config),
            fiscal_year_start_month=fiscal_year_start_month,
        )
        # Never drop a penalty below what has already been paid towards it.
        penalty = max(penalty, bill.penalty_paid_amount)
        recomputed[bill.bill_id] = penalty
        outstanding[bill.bill_id] = (
            penalty - bill.penalty_paid_amount,
            max(0, bill.base_charge_amount - bill.base_paid_amount),
        )

    if payment_amount == 0:
        return AllocationPlan(
            payment_amount=0,
            payment_date=payment_date,
            credit_balance_before=credit_balance,
            credit_draw_order=credit_draw_order,
            recomputed_penalties=recomputed,
        )

    funds = _Funds(payment_amount, credit_balance, credit_draw_order)
    applied: dict[str, list[int]] = {bill.bill_id: [0, 0] for bill in ordered}
    penalty_lines: list[AllocationLine] = []
    base_lines: list[AllocationLine] = []

    exhausted = False
    for slot, lines in ((0, penalty_lines), (1, base_lines)):
        for bill in ordered:
            needed = outstanding[bill.bill_id][slot]
            if needed <= 0:
                continue
            taken = funds.draw(needed)
            if taken > 0:
                applied[bill.bill_id][slot] = taken
                lines.append(
                    AllocationLine(
                        target_kind=(
                            AllocationTargetKind.PENALTY if slot == 0 else AllocationTargetKind.BASE
                        ),
                        amount=taken,
                        bill_id=bill.bill_id,
                        period_key=bill.period_key,
                        category=bill.category,
                    )
                )
            if taken < needed:
                exhausted = True
                break
        if exhausted:
            break

    credit_created = funds.payment_remaining
    credit_delta = credit_created - funds.credit_used
    lines = [*penalty_lines, *base_lines]
    if credit_delta != 0:
        lines.append(AllocationLine(target_kind=AllocationTargetKind.CREDIT, amount=credit_delta))

    outcomes: list[BillOutcome] = []
    for bill in ordered:
        penalty_applied, base_applied = applied[bill.bill_id]
        if penalty_applied == 0 and base_applied == 0:
            continue
        penalty_after = recomputed[bill.bill_id]
        penalty_paid_after = bill.penalty_paid_amount + penalty_applied
        base_paid_after = bill.base_paid_amount + base_applied
        outcomes.append(
            BillOutcome(
                bill_id=bill.bill_id,
                period_key=bill.period_key,
                penalty_before=bill.penalty_amount,
                penalty_after=penalty_after,
                penalty_applied=penalty_applied,
                base_applied=base_applied,
                penalty_paid_after=penalty_paid_after,
                base_paid_after=base_paid_after,
                status_after=derive_status(
                    penalty_paid_after + base_paid_after,
                    bill.base_charge_amount + penalty_after,
                ),
            )
        )

    plan = AllocationPlan(
        payment_amount=payment_amount,
        payment_date=payment_date,
        credit_balance_before=credit_balance,
        credit_draw_order=credit_draw_order,
        lines=tuple(lines),
        bill_outcomes=tuple(outcomes),
        recomputed_penalties=recomputed,
        credit_used=funds.credit_used,
        credit_created=credit_created,
    )

    if plan.allocated_total != payment_amount:
        raise DataIntegrityError(
            f"Allocation plan does not balance: {plan.allocated_total} != {payment_amount}"
        )

    LOGGER.debug(
        "Planned payment allocation",
        extra={
            "payment_amount": payment_amount,
            "payment_date": payment_date.isoformat(),
            "lines": len(plan.lines),
            "credit_delta": plan.credit_delta,
        },
    )
    return plan
