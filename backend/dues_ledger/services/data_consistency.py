"""Read-only reconciliation of stored ledger invariants."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models


@dataclass(frozen=True)
class CreditBalanceMismatch:
    """A unit whose stored credit balance disagrees with its history."""

    unit_id: str
    stored_balance: int
    history_total: int
    last_balance_after: int | None


@dataclass(frozen=True)
class BillIntegrityIssue:
    """A bill whose amounts break the paid/due rules."""

    bill_id: str
    unit_id: str
    period_key: str
    problem: str


@dataclass(frozen=True)
class PaymentRecipeMismatch:
    """A payment whose allocation lines do not add up to its amount."""

    payment_id: str
    amount: int
    allocated_total: int


@dataclass(frozen=True)
class LedgerConsistencySnapshot:
    """Aggregated inconsistencies detected across the ledger tables."""

    credit_balances: list[CreditBalanceMismatch]
    bills: list[BillIntegrityIssue]
    payments: list[PaymentRecipeMismatch]

    @property
    def is_clean(self) -> bool:
        return not (self.credit_balances or self.bills or self.payments)


class DataConsistencyService:
    """Surface ledger rows that violate the invariants the services maintain."""

    @staticmethod
    def _build_total_map(rows: Iterable[tuple[str | None, int | None]]) -> dict[str, int]:
        return {str(key): int(total or 0) for key, total in rows if key is not None}

    @classmethod
    def credit_balance_mismatches(cls, db: Session) -> list[CreditBalanceMismatch]:
        history_totals = cls._build_total_map(
            db.query(
                models.CreditHistoryEntry.unit_id,
                func.sum(models.CreditHistoryEntry.delta),
            )
            .group_by(models.CreditHistoryEntry.unit_id)
            .all()
        )

        last_sequences = (
            db.query(
                models.CreditHistoryEntry.unit_id.label("unit_id"),
                func.max(models.CreditHistoryEntry.sequence).label("sequence"),
            )
            .group_by(models.CreditHistoryEntry.unit_id)
            .subquery()
        )
        last_balances = cls._build_total_map(
            db.query(models.CreditHistoryEntry.unit_id, models.CreditHistoryEntry.balance_after)
            .join(
                last_sequences,
                (models.CreditHistoryEntry.unit_id == last_sequences.c.unit_id)
                & (models.CreditHistoryEntry.sequence == last_sequences.c.sequence),
            )
            .all()
        )

        mismatches: list[CreditBalanceMismatch] = []
        for unit_id, balance in db.query(models.Unit.id, models.Unit.credit_balance).order_by(
            models.Unit.code
        ):
            key = str(unit_id)
            history_total = history_totals.get(key, 0)
            last_balance = last_balances.get(key)
            stored = int(balance or 0)
            if stored != history_total or (last_balance is not None and last_balance != stored):
                mismatches.append(
                    CreditBalanceMismatch(
                        unit_id=key,
                        stored_balance=stored,
                        history_total=history_total,
                        last_balance_after=last_balance,
                    )
                )
        return mismatches

    @staticmethod
    def bill_issues(db: Session) -> list[BillIntegrityIssue]:
        issues: list[BillIntegrityIssue] = []
        for bill in db.query(models.Bill).order_by(models.Bill.unit_id, models.Bill.due_date):
            problems = []
            if bill.paid_amount > bill.total_due_amount:
                problems.append("paid amount exceeds base charge plus penalty")
            if bill.paid_amount != bill.penalty_paid_amount + bill.base_paid_amount:
                problems.append("paid amount differs from penalty and base paid parts")
            if bill.penalty_paid_amount > bill.penalty_amount:
                problems.append("penalty paid exceeds penalty")
            if bill.base_paid_amount > bill.base_charge_amount:
                problems.append("base paid exceeds base charge")
            if bill.paid_amount == 0 and bill.penalty_baseline_amount is not None:
                problems.append("penalty baseline kept on a bill with nothing paid")
            for problem in problems:
                issues.append(
                    BillIntegrityIssue(
                        bill_id=str(bill.id),
                        unit_id=str(bill.unit_id),
                        period_key=bill.period_key,
                        problem=problem,
                    )
                )
        return issues

    @staticmethod
    def payment_recipe_mismatches(db: Session) -> list[PaymentRecipeMismatch]:
        rows = (
            db.query(
                models.Payment.id,
                models.Payment.amount,
                func.coalesce(func.sum(models.PaymentAllocation.amount), 0),
            )
            .outerjoin(
                models.PaymentAllocation,
                models.PaymentAllocation.payment_id == models.Payment.id,
            )
            .group_by(models.Payment.id, models.Payment.amount)
            .all()
        )
        return [
            PaymentRecipeMismatch(
                payment_id=str(payment_id),
                amount=int(amount),
                allocated_total=int(allocated),
            )
            for payment_id, amount, allocated in rows
            if int(allocated) != int(amount)
        ]

    @classmethod
    def ledger_snapshot(cls, db: Session) -> LedgerConsistencySnapshot:
        """Run every ledger check and collect the findings."""

        return LedgerConsistencySnapshot(
            credit_balances=cls.credit_balance_mismatches(db),
            bills=cls.bill_issues(db),
            payments=cls.payment_recipe_mismatches(db),
        )
