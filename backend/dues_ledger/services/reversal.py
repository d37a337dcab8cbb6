"""Exact reversal of a stored payment from its allocation recipe."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from time import perf_counter
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..config import EngineSettings, load_engine_settings
from .allocation import derive_status
from .errors import (
    DataIntegrityError,
    LedgerConflictError,
    PaymentNotFoundError,
    PaymentServiceError,
    ReversalBlockedError,
)
from .ledger import LedgerService, is_conflict_error, run_with_retry
from .observability import MetricOutcome, ObservabilityService

LOGGER = logging.getLogger(__name__)


@dataclass
class _BillReversal:
    penalty: int = 0
    base: int = 0
    penalty_before: Optional[int] = None
    penalty_after: Optional[int] = None


@dataclass(frozen=True)
class ReversalResult:
    """What a reversal undid."""

    payment_id: str
    unit_id: str
    amount: int
    payment_date: date
    credit_delta: int
    credit_balance_after: int
    bill_ids: tuple[str, ...] = field(default_factory=tuple)


class ReversalService:
    """Undo payments using only what was stored when they were recorded."""

    @staticmethod
    def _recipe_by_bill(payment: models.Payment) -> dict[str, _BillReversal]:
        """Validate the allocation recipe and group its bill lines.

        Raises:
            DataIntegrityError: the recipe is missing, unbalanced or malformed.
        """

        allocations = list(payment.allocations)
        if not allocations:
            raise DataIntegrityError(f"Payment {payment.id} has no allocation recipe")

        if sum(allocation.amount for allocation in allocations) != payment.amount:
            raise DataIntegrityError(
                f"Allocation recipe of payment {payment.id} does not add up to {payment.amount}"
            )

        sequences = [allocation.sequence for allocation in allocations]
        if len(set(sequences)) != len(sequences):
            raise DataIntegrityError(f"Allocation recipe of payment {payment.id} repeats a sequence")

        credit_lines = [
            allocation
            for allocation in allocations
            if allocation.target_kind == models.AllocationTargetKind.CREDIT
        ]
        if len(credit_lines) > 1:
            raise DataIntegrityError(f"Payment {payment.id} has more than one credit line")
        credit_amount = credit_lines[0].amount if credit_lines else 0
        if credit_amount != payment.credit_delta:
            raise DataIntegrityError(
                f"Credit line of payment {payment.id} disagrees with its credit delta"
            )

        by_bill: dict[str, _BillReversal] = {}
        for allocation in allocations:
            if allocation.target_kind == models.AllocationTargetKind.CREDIT:
                continue
            if allocation.bill_id is None or allocation.amount <= 0:
                raise DataIntegrityError(
                    f"Allocation {allocation.sequence} of payment {payment.id} is malformed"
                )
            entry = by_bill.setdefault(str(allocation.bill_id), _BillReversal())
            if entry.penalty_after is None:
                entry.penalty_before = allocation.penalty_before
                entry.penalty_after = allocation.penalty_after
            elif (entry.penalty_before, entry.penalty_after) != (
                allocation.penalty_before,
                allocation.penalty_after,
            ):
                raise DataIntegrityError(
                    f"Allocations of payment {payment.id} disagree on bill {allocation.bill_id}"
                )
            if allocation.target_kind == models.AllocationTargetKind.PENALTY:
                entry.penalty += allocation.amount
            else:
                entry.base += allocation.amount
        return by_bill

    @staticmethod
    def _revert_bill(bill: models.Bill, reversal: _BillReversal, payment_id: str) -> None:
        if bill.penalty_paid_amount < reversal.penalty or bill.base_paid_amount < reversal.base:
            raise DataIntegrityError(
                f"Bill {bill.id} holds less than payment {payment_id} allocated to it"
            )

        bill.penalty_paid_amount -= reversal.penalty
        bill.base_paid_amount -= reversal.base
        bill.paid_amount = bill.penalty_paid_amount + bill.base_paid_amount

        if bill.paid_amount == 0 and bill.penalty_baseline_amount is not None:
            # No payment on record touches the bill any more, whatever order
            # they were reversed in.
            bill.penalty_amount = bill.penalty_baseline_amount
            bill.penalty_baseline_amount = None
        elif reversal.penalty_before is not None and bill.penalty_amount == reversal.penalty_after:
            # Only undo the recomputation if nothing rewrote the penalty since.
            bill.penalty_amount = max(reversal.penalty_before, bill.penalty_paid_amount)

        bill.status = derive_status(bill.paid_amount, bill.total_due_amount)

    @classmethod
    def _reverse_once(cls, db: Session, payment_id: str) -> ReversalResult:
        payment = LedgerService.get_payment(db, payment_id)
        if payment is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")

        unit = LedgerService.get_unit(db, payment.unit_id, for_update=True)
        recipe = cls._recipe_by_bill(payment)

        if unit.credit_balance - payment.credit_delta < 0:
            raise ReversalBlockedError(
                f"Reversing payment {payment_id} would leave unit {unit.id} with negative "
                f"credit; its surplus of {payment.credit_delta} has already been used"
            )

        bills_query = db.query(models.Bill).filter(models.Bill.id.in_(list(recipe)))
        bills = {str(bill.id): bill for bill in bills_query.all()}
        for bill_id, reversal in recipe.items():
            bill = bills.get(bill_id)
            if bill is None or str(bill.unit_id) != str(unit.id):
                raise DataIntegrityError(
                    f"Payment {payment_id} references bill {bill_id} outside unit {unit.id}"
                )
            cls._revert_bill(bill, reversal, payment_id)
            db.add(bill)

        snapshot = {
            "unit_id": str(unit.id),
            "amount": payment.amount,
            "payment_date": payment.payment_date.isoformat(),
            "credit_delta": payment.credit_delta,
            "recorded_by": payment.recorded_by,
            "allocations": [
                {
                    "sequence": allocation.sequence,
                    "bill_id": allocation.bill_id,
                    "target_kind": models.AllocationTargetKind(allocation.target_kind).value,
                    "amount": allocation.amount,
                    "penalty_before": allocation.penalty_before,
                    "penalty_after": allocation.penalty_after,
                }
                for allocation in payment.allocations
            ],
        }

        LedgerService.append_credit_entry(
            db,
            unit,
            -payment.credit_delta,
            models.CreditReason.REVERSAL,
            payment_id=payment.id,
        )
        db.add(
            models.PaymentAuditLog(
                payment_id=payment.id,
                unit_id=unit.id,
                action=models.PaymentAuditAction.DELETED,
                snapshot=snapshot,
            )
        )

        result = ReversalResult(
            payment_id=str(payment.id),
            unit_id=str(unit.id),
            amount=payment.amount,
            payment_date=payment.payment_date,
            credit_delta=payment.credit_delta,
            credit_balance_after=unit.credit_balance,
            bill_ids=tuple(recipe),
        )

        db.delete(payment)
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            if is_conflict_error(exc):
                raise LedgerConflictError(f"Unit {unit.id} was modified concurrently") from exc
            raise PaymentServiceError("Unable to reverse payment at this time.") from exc
        return result

    @classmethod
    def reverse_payment(
        cls,
        db: Session,
        payment_id: str,
        *,
        settings: Optional[EngineSettings] = None,
    ) -> ReversalResult:
        """Undo a payment exactly and remove it.

        Raises:
            PaymentNotFoundError: no payment with ``payment_id``.
            ReversalBlockedError: the payment's surplus credit was already spent.
            DataIntegrityError: the stored recipe cannot be trusted.
            LedgerConflictError: the unit stayed contended after every retry.
        """

        start = perf_counter()
        settings = settings or load_engine_settings()
        tags: dict[str, object] = {"payment_id": payment_id}

        try:
            result, attempts = run_with_retry(
                db,
                lambda: cls._reverse_once(db, payment_id),
                settings,
                event_type="ledger.reversal",
                tags=tags,
            )
        except DataIntegrityError as exc:
            db.rollback()
            LOGGER.error(
                "Refusing to reverse payment with a corrupt recipe: %s", exc, extra=tags
            )
            ObservabilityService.record_validation_result(
                db,
                "ledger.reversal_integrity_violation",
                outcome=MetricOutcome.ERROR,
                reason=str(exc),
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise
        except (ValueError, LookupError) as exc:
            db.rollback()
            ObservabilityService.record_validation_result(
                db,
                "ledger.reversal_rejected",
                outcome=MetricOutcome.REJECTED,
                reason=str(exc),
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise
        except (LedgerConflictError, PaymentServiceError) as exc:
            LOGGER.exception("Unable to reverse payment", extra=tags)
            ObservabilityService.record_validation_result(
                db,
                "ledger.reversal_failed",
                outcome=(
                    MetricOutcome.CONFLICT
                    if isinstance(exc, LedgerConflictError)
                    else MetricOutcome.ERROR
                ),
                reason=str(exc),
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise

        LOGGER.info(
            "Payment reversed",
            extra={
                "payment_id": result.payment_id,
                "unit_id": result.unit_id,
                "credit_delta": result.credit_delta,
                "attempts": attempts,
            },
        )
        ObservabilityService.record_event(
            db,
            "ledger.payment_reversed",
            MetricOutcome.SUCCESS,
            duration_ms=(perf_counter() - start) * 1000,
            tags={**tags, "unit_id": result.unit_id, "attempts": attempts},
        )
        return result
