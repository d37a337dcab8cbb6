"""Atomic application of payments and credit movements to a unit's ledger."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from time import perf_counter
from typing import Callable, Iterable, Optional, Tuple, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from .. import models
from ..config import EngineSettings, load_engine_settings
from .allocation import AllocationPlan, BillSnapshot, plan_allocation
from .errors import (
    DataIntegrityError,
    LedgerConflictError,
    PaymentServiceError,
    PaymentValidationError,
    UnitNotFoundError,
)
from .observability import MetricOutcome, ObservabilityService
from .penalties import penalty_configs_for_unit

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
_CONFLICT_MESSAGES = ("database is locked", "deadlock", "could not serialize", "lock not available")


def is_conflict_error(exc: BaseException) -> bool:
    """Whether a database error means another writer got to the unit first."""

    if isinstance(exc, (StaleDataError, LedgerConflictError)):
        return True
    if isinstance(exc, (OperationalError, DBAPIError)):
        original = getattr(exc, "orig", None)
        if getattr(original, "pgcode", None) in _CONFLICT_SQLSTATES:
            return True
        message = str(original or exc).lower()
        return any(marker in message for marker in _CONFLICT_MESSAGES)
    return False


def run_with_retry(
    db: Session,
    operation: Callable[[], T],
    settings: EngineSettings,
    *,
    event_type: str,
    tags: Optional[dict[str, object]] = None,
) -> Tuple[T, int]:
    """Run ``operation`` until it commits or the attempt budget is spent.

    Every attempt starts from a fresh read: conflicts roll the session back
    before sleeping ``backoff * 2 ** (attempt - 1)`` seconds.
    """

    attempt = 0
    while True:
        attempt += 1
        try:
            return operation(), attempt
        except SQLAlchemyError as exc:
            db.rollback()
            if not is_conflict_error(exc):
                raise PaymentServiceError("Unable to update the ledger at this time.") from exc
            failure: Exception = exc
        except LedgerConflictError as exc:
            db.rollback()
            failure = exc

        if attempt >= settings.max_attempts:
            raise LedgerConflictError(
                f"Ledger stayed contended after {attempt} attempts; retry the operation"
            ) from failure

        LOGGER.warning(
            "Ledger conflict, retrying",
            extra={"event_type": event_type, "attempt": attempt, **(tags or {})},
        )
        ObservabilityService.record_event(
            db,
            f"{event_type}.retry",
            MetricOutcome.CONFLICT,
            tags={"attempt": attempt, **(tags or {})},
            metadata={"exception": str(failure)},
        )
        time.sleep(settings.retry_backoff_seconds * 2 ** (attempt - 1))


def supports_row_locks(db: Session) -> bool:
    bind = db.get_bind()
    return getattr(getattr(bind, "dialect", None), "name", "sqlite") != "sqlite"


@dataclass(frozen=True)
class PaymentRequest:
    """A payment as received from a caller, before any ledger state is read."""

    unit_id: str
    amount: int
    payment_date: date
    note: Optional[str] = None
    recorded_by: Optional[str] = None


@dataclass
class PaymentRecordResult:
    """Stored payment together with the plan that produced it."""

    payment: models.Payment
    plan: AllocationPlan
    attempts: int = 1


class LedgerService:
    """The only writer of bills, credit balances and credit history."""

    @staticmethod
    def get_unit(db: Session, unit_id: str, *, for_update: bool = False) -> models.Unit:
        query = db.query(models.Unit).filter(models.Unit.id == unit_id)
        if for_update and supports_row_locks(db):
            query = query.with_for_update()
        unit = query.first()
        if unit is None:
            raise UnitNotFoundError(f"Unit {unit_id} not found")
        return unit

    @staticmethod
    def _load_open_bills(
        db: Session, unit_id: str, *, for_update: bool = False
    ) -> list[models.Bill]:
        query = (
            db.query(models.Bill)
            .filter(models.Bill.unit_id == unit_id)
            .filter(models.Bill.status != models.BillStatus.PAID)
            .order_by(models.Bill.due_date, models.Bill.period_key, models.Bill.id)
        )
        if for_update and supports_row_locks(db):
            query = query.with_for_update()
        return query.all()

    @staticmethod
    def _validate_request(request: PaymentRequest, *, allow_zero: bool = False) -> None:
        if not request.unit_id:
            raise PaymentValidationError("unit_id is required")
        if isinstance(request.amount, bool) or not isinstance(request.amount, int):
            raise PaymentValidationError("amount must be an integer amount of minor units")
        if request.amount < 0 or (request.amount == 0 and not allow_zero):
            raise PaymentValidationError("amount must be greater than zero")
        if not isinstance(request.payment_date, date) or isinstance(
            request.payment_date, datetime
        ):
            raise PaymentValidationError("payment_date must be a calendar date")

    @classmethod
    def plan_for_unit(
        cls,
        db: Session,
        unit: models.Unit,
        amount: int,
        payment_date: date,
        *,
        settings: Optional[EngineSettings] = None,
        for_update: bool = False,
    ) -> AllocationPlan:
        """Plan a payment against the unit's current bills and credit."""

        settings = settings or load_engine_settings()
        bills = cls._load_open_bills(db, unit.id, for_update=for_update)
        return plan_allocation(
            [BillSnapshot.from_model(bill) for bill in bills],
            amount,
            payment_date,
            unit.credit_balance,
            penalty_configs_for_unit(unit, settings),
            credit_draw_order=unit.credit_draw_order or settings.credit_draw_order,
            fiscal_year_start_month=unit.fiscal_year_start_month,
        )

    @staticmethod
    def _next_credit_sequence(db: Session, unit_id: str) -> int:
        current = (
            db.query(func.max(models.CreditHistoryEntry.sequence))
            .filter(models.CreditHistoryEntry.unit_id == unit_id)
            .scalar()
        )
        return (current or 0) + 1

    @classmethod
    def append_credit_entry(
        cls,
        db: Session,
        unit: models.Unit,
        delta: int,
        reason: models.CreditReason,
        *,
        payment_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> models.CreditHistoryEntry:
        """Move the unit's credit balance and append the matching history row.

        The unit row is always rewritten so its version counter advances even
        when ``delta`` is zero.
        """

        balance_after = (unit.credit_balance or 0) + delta
        if balance_after < 0:
            raise DataIntegrityError(
                f"Credit balance for unit {unit.id} would become negative ({balance_after})"
            )

        entry = models.CreditHistoryEntry(
            unit_id=unit.id,
            sequence=cls._next_credit_sequence(db, unit.id),
            delta=delta,
            balance_after=balance_after,
            reason=reason,
            payment_id=payment_id,
            note=note,
        )
        unit.credit_balance = balance_after
        unit.updated_at = datetime.now(timezone.utc)
        db.add(unit)
        db.add(entry)
        return entry

    @staticmethod
    def _ensure_plan_is_current(
        plan: AllocationPlan, unit: models.Unit, bills: dict[str, models.Bill]
    ) -> None:
        if plan.credit_balance_before != unit.credit_balance:
            raise LedgerConflictError(
                f"Credit balance of unit {unit.id} changed since the plan was built"
            )
        for outcome in plan.bill_outcomes:
            bill = bills.get(outcome.bill_id)
            if bill is None:
                raise LedgerConflictError(f"Bill {outcome.bill_id} is no longer open")
            if (
                bill.penalty_paid_amount != outcome.penalty_paid_after - outcome.penalty_applied
                or bill.base_paid_amount != outcome.base_paid_after - outcome.base_applied
            ):
                raise LedgerConflictError(f"Bill {outcome.bill_id} changed since the plan was built")

    @staticmethod
    def _recipe_snapshot(payment: models.Payment, plan: AllocationPlan) -> dict:
        return {
            "unit_id": str(payment.unit_id),
            "amount": payment.amount,
            "payment_date": payment.payment_date.isoformat(),
            "credit_delta": payment.credit_delta,
            "credit_balance_before": plan.credit_balance_before,
            "credit_balance_after": plan.credit_balance_after,
            "credit_draw_order": plan.credit_draw_order.value,
            "recorded_by": payment.recorded_by,
            "note": payment.note,
            "allocations": [
                {
                    "sequence": allocation.sequence,
                    "bill_id": allocation.bill_id,
                    "target_kind": allocation.target_kind.value,
                    "amount": allocation.amount,
                    "penalty_before": allocation.penalty_before,
                    "penalty_after": allocation.penalty_after,
                }
                for allocation in payment.allocations
            ],
        }

    @classmethod
    def apply_payment(
        cls,
        db: Session,
        plan: AllocationPlan,
        unit_id: str,
        *,
        note: Optional[str] = None,
        recorded_by: Optional[str] = None,
    ) -> models.Payment:
        """Write ``plan`` to the ledger in a single transaction.

        Bills, the credit balance, one credit history entry, the payment with
        its allocation recipe and a ``created`` audit row either all commit or
        none do.

        Raises:
            PaymentValidationError: the plan moves no money.
            LedgerConflictError: the unit changed since the plan was built.
            PaymentServiceError: the database rejected the write.

        Any failure rolls the session back before it propagates.
        """

        if plan.payment_amount <= 0:
            raise PaymentValidationError("A zero-amount plan is a preview and cannot be applied")

        try:
            unit = cls.get_unit(db, unit_id, for_update=True)
            bills = {
                str(bill.id): bill for bill in cls._load_open_bills(db, unit.id, for_update=True)
            }
            cls._ensure_plan_is_current(plan, unit, bills)

            payment = models.Payment(
                id=str(uuid.uuid4()),
                unit_id=unit.id,
                amount=plan.payment_amount,
                payment_date=plan.payment_date,
                credit_delta=plan.credit_delta,
                note=note,
                recorded_by=recorded_by,
            )

            for sequence, line in enumerate(plan.lines, start=1):
                allocation = models.PaymentAllocation(
                    sequence=sequence,
                    bill_id=line.bill_id,
                    target_kind=line.target_kind,
                    amount=line.amount,
                )
                if line.bill_id is not None:
                    outcome = plan.outcome_for(line.bill_id)
                    allocation.penalty_before = outcome.penalty_before
                    allocation.penalty_after = outcome.penalty_after
                payment.allocations.append(allocation)

            for outcome in plan.bill_outcomes:
                bill = bills[outcome.bill_id]
                if bill.paid_amount == 0:
                    bill.penalty_baseline_amount = outcome.penalty_before
                bill.penalty_amount = outcome.penalty_after
                bill.penalty_paid_amount = outcome.penalty_paid_after
                bill.base_paid_amount = outcome.base_paid_after
                bill.paid_amount = outcome.paid_amount_after
                bill.status = outcome.status_after
                db.add(bill)

            db.add(payment)
            cls.append_credit_entry(
                db,
                unit,
                plan.credit_delta,
                models.CreditReason.PAYMENT,
                payment_id=payment.id,
            )
            db.add(
                models.PaymentAuditLog(
                    payment_id=payment.id,
                    unit_id=unit.id,
                    action=models.PaymentAuditAction.CREATED,
                    performed_by=recorded_by,
                    notes=note,
                    snapshot=cls._recipe_snapshot(payment, plan),
                )
            )

            db.commit()
            db.refresh(payment)
            return payment
        except SQLAlchemyError as exc:
            db.rollback()
            if is_conflict_error(exc):
                raise LedgerConflictError(
                    f"Unit {unit_id} was modified concurrently"
                ) from exc
            raise PaymentServiceError("Unable to record payment at this time.") from exc
        except Exception:
            db.rollback()
            raise

    @classmethod
    def record_payment(
        cls,
        db: Session,
        request: PaymentRequest,
        *,
        settings: Optional[EngineSettings] = None,
    ) -> PaymentRecordResult:
        """Validate, plan and apply a payment, retrying on unit contention."""

        start = perf_counter()
        settings = settings or load_engine_settings()
        tags: dict[str, object] = {"unit_id": request.unit_id}

        def _attempt() -> Tuple[models.Payment, AllocationPlan]:
            unit = cls.get_unit(db, request.unit_id, for_update=True)
            plan = cls.plan_for_unit(
                db,
                unit,
                request.amount,
                request.payment_date,
                settings=settings,
                for_update=True,
            )
            payment = cls.apply_payment(
                db,
                plan,
                unit.id,
                note=request.note,
                recorded_by=request.recorded_by,
            )
            return payment, plan

        try:
            cls._validate_request(request)
            (payment, plan), attempts = run_with_retry(
                db, _attempt, settings, event_type="ledger.payment", tags=tags
            )
        except (ValueError, LookupError) as exc:
            db.rollback()
            ObservabilityService.record_validation_result(
                db,
                "ledger.payment_rejected",
                outcome=MetricOutcome.REJECTED,
                reason=str(exc),
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise
        except LedgerConflictError as exc:
            LOGGER.warning("Payment abandoned after repeated conflicts", extra=tags)
            ObservabilityService.record_validation_result(
                db,
                "ledger.payment_conflict",
                outcome=MetricOutcome.CONFLICT,
                reason=str(exc),
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise
        except (PaymentServiceError, DataIntegrityError) as exc:
            db.rollback()
            LOGGER.exception("Unable to record payment", extra=tags)
            ObservabilityService.record_validation_result(
                db,
                "ledger.payment_failed",
                outcome=MetricOutcome.ERROR,
                reason=str(exc),
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise

        duration = (perf_counter() - start) * 1000
        LOGGER.info(
            "Payment recorded",
            extra={
                "payment_id": payment.id,
                "unit_id": payment.unit_id,
                "amount": payment.amount,
                "credit_delta": payment.credit_delta,
                "attempts": attempts,
            },
        )
        ObservabilityService.record_event(
            db,
            "ledger.payment_recorded",
            MetricOutcome.SUCCESS,
            duration_ms=duration,
            tags={**tags, "attempts": attempts, "lines": len(plan.lines)},
        )
        return PaymentRecordResult(payment=payment, plan=plan, attempts=attempts)

    @classmethod
    def preview_payment(
        cls,
        db: Session,
        request: PaymentRequest,
        *,
        settings: Optional[EngineSettings] = None,
    ) -> AllocationPlan:
        """Plan ``request`` without writing anything; a zero amount is allowed."""

        cls._validate_request(request, allow_zero=True)
        with ObservabilityService.timed_event(
            db, "ledger.payment_preview", tags={"unit_id": request.unit_id}
        ):
            try:
                unit = cls.get_unit(db, request.unit_id)
                return cls.plan_for_unit(
                    db, unit, request.amount, request.payment_date, settings=settings
                )
            finally:
                db.rollback()

    @classmethod
    def adjust_credit(
        cls,
        db: Session,
        unit_id: str,
        delta: int,
        note: Optional[str] = None,
        *,
        settings: Optional[EngineSettings] = None,
    ) -> models.CreditHistoryEntry:
        """Manually move a unit's credit balance by ``delta``."""

        if isinstance(delta, bool) or not isinstance(delta, int):
            raise PaymentValidationError("delta must be an integer amount of minor units")
        if delta == 0:
            raise PaymentValidationError("delta must not be zero")

        settings = settings or load_engine_settings()

        def _attempt() -> models.CreditHistoryEntry:
            unit = cls.get_unit(db, unit_id, for_update=True)
            if unit.credit_balance + delta < 0:
                raise PaymentValidationError(
                    f"Adjustment of {delta} exceeds the available credit of {unit.credit_balance}"
                )
            entry = cls.append_credit_entry(
                db, unit, delta, models.CreditReason.ADJUSTMENT, note=note
            )
            db.commit()
            db.refresh(entry)
            return entry

        try:
            entry, _ = run_with_retry(
                db, _attempt, settings, event_type="ledger.credit_adjustment", tags={"unit_id": unit_id}
            )
        except (ValueError, LookupError):
            db.rollback()
            raise

        LOGGER.info(
            "Credit adjusted",
            extra={"unit_id": unit_id, "delta": delta, "balance_after": entry.balance_after},
        )
        return entry

    @staticmethod
    def get_payment(db: Session, payment_id: str) -> Optional[models.Payment]:
        return (
            db.query(models.Payment)
            .options(selectinload(models.Payment.allocations))
            .filter(models.Payment.id == payment_id)
            .first()
        )

    @staticmethod
    def list_payments(
        db: Session,
        *,
        unit_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[Iterable[models.Payment], int]:
        query = db.query(models.Payment).options(selectinload(models.Payment.allocations))

        if unit_id:
            query = query.filter(models.Payment.unit_id == unit_id)
        if start_date:
            query = query.filter(models.Payment.payment_date >= start_date)
        if end_date:
            query = query.filter(models.Payment.payment_date <= end_date)

        total = query.count()
        items = (
            query.order_by(
                models.Payment.payment_date.desc(),
                models.Payment.recorded_at.desc(),
            )
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    @classmethod
    def credit_history(cls, db: Session, unit_id: str) -> list[models.CreditHistoryEntry]:
        cls.get_unit(db, unit_id)
        return (
            db.query(models.CreditHistoryEntry)
            .filter(models.CreditHistoryEntry.unit_id == unit_id)
            .order_by(models.CreditHistoryEntry.sequence)
            .all()
        )

    @classmethod
    def list_bills(
        cls,
        db: Session,
        unit_id: str,
        *,
        status: Optional[models.BillStatus] = None,
        category: Optional[models.BillCategory] = None,
    ) -> list[models.Bill]:
        cls.get_unit(db, unit_id)
        query = db.query(models.Bill).filter(models.Bill.unit_id == unit_id)
        if status is not None:
            query = query.filter(models.Bill.status == status)
        if category is not None:
            query = query.filter(models.Bill.category == category)
        return query.order_by(
            models.Bill.due_date, models.Bill.category, models.Bill.period_key
        ).all()
