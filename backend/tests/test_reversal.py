from __future__ import annotations

from datetime import date

import pytest

from backend.dues_ledger import models
from backend.dues_ledger.services.errors import (
    DataIntegrityError,
    PaymentNotFoundError,
    ReversalBlockedError,
)
from backend.dues_ledger.services.ledger import LedgerService, PaymentRequest
from backend.dues_ledger.services.reversal import ReversalService


def _pay(db, unit, amount: int, paid_on: date, settings) -> models.Payment:
    request = PaymentRequest(unit_id=unit.id, amount=amount, payment_date=paid_on)
    return LedgerService.record_payment(db, request, settings=settings).payment


def _bill_state(db, bill_id) -> tuple:
    db.expire_all()
    bill = db.get(models.Bill, bill_id)
    return (
        bill.penalty_amount,
        bill.penalty_paid_amount,
        bill.base_paid_amount,
        bill.paid_amount,
        bill.status,
    )


def test_reversal_restores_the_bill_and_logs_a_zero_entry(db_session, seed_unit, settings) -> None:
    unit = seed_unit["unit"]
    bill_id = seed_unit["bill"].id
    payment = _pay(db_session, unit, 109250, date(2025, 4, 1), settings)
    payment_id = payment.id

    result = ReversalService.reverse_payment(db_session, payment_id, settings=settings)

    assert result.credit_delta == 0
    assert _bill_state(db_session, bill_id) == (0, 0, 0, 0, models.BillStatus.UNPAID)
    assert db_session.get(models.Payment, payment_id) is None
    history = LedgerService.credit_history(db_session, unit.id)
    assert [(entry.delta, entry.reason, entry.payment_id) for entry in history] == [
        (0, models.CreditReason.PAYMENT, payment_id),
        (0, models.CreditReason.REVERSAL, payment_id),
    ]


def test_apply_then_reverse_is_symmetric(db_session, seed_unit, bill_factory, settings) -> None:
    unit = seed_unit["unit"]
    feb = bill_factory(unit, "2025-02", due_date=date(2025, 2, 1), issued_on=date(2025, 1, 15))
    jan_id, feb_id = seed_unit["bill"].id, feb.id
    first = _pay(db_session, unit, 50000, date(2025, 3, 1), settings)

    before = (_bill_state(db_session, jan_id), _bill_state(db_session, feb_id))
    balance_before = db_session.get(models.Unit, unit.id).credit_balance

    second = _pay(db_session, unit, 250000, date(2025, 4, 1), settings)
    ReversalService.reverse_payment(db_session, second.id, settings=settings)

    assert (_bill_state(db_session, jan_id), _bill_state(db_session, feb_id)) == before
    assert db_session.get(models.Unit, unit.id).credit_balance == balance_before
    history = LedgerService.credit_history(db_session, unit.id)
    assert len(history) == 3
    assert history[-1].delta == -history[-2].delta
    assert db_session.get(models.Payment, first.id) is not None


def test_reversal_then_backdated_payment(db_session, seed_unit, settings) -> None:
    unit = seed_unit["unit"]
    bill_id = seed_unit["bill"].id
    original = _pay(db_session, unit, 114000, date(2025, 5, 1), settings)
    assert _bill_state(db_session, bill_id)[0] == 19000

    ReversalService.reverse_payment(db_session, original.id, settings=settings)
    _pay(db_session, unit, 99750, date(2025, 2, 1), settings)

    assert _bill_state(db_session, bill_id) == (4750, 4750, 95000, 99750, models.BillStatus.PAID)


def test_reversal_of_spent_credit_is_blocked(
    db_session, seed_unit, bill_factory, settings
) -> None:
    unit = seed_unit["unit"]
    overpayment = _pay(db_session, unit, 120000, date(2025, 4, 1), settings)
    bill_factory(unit, "2025-04", due_date=date(2025, 4, 1), base_charge_amount=10000)
    _pay(db_session, unit, 4250, date(2025, 4, 1), settings)

    with pytest.raises(ReversalBlockedError):
        ReversalService.reverse_payment(db_session, overpayment.id, settings=settings)

    db_session.expire_all()
    assert db_session.get(models.Payment, overpayment.id) is not None


def test_missing_payment_is_reported(db_session, settings) -> None:
    with pytest.raises(PaymentNotFoundError):
        ReversalService.reverse_payment(db_session, "does-not-exist", settings=settings)


def test_corrupt_recipe_is_an_integrity_error(db_session, seed_unit, settings) -> None:
    unit = seed_unit["unit"]
    bill_id = seed_unit["bill"].id
    payment = _pay(db_session, unit, 60000, date(2025, 4, 1), settings)
    payment_id = payment.id

    line = payment.allocations[-1]
    db_session.delete(line)
    db_session.commit()

    with pytest.raises(DataIntegrityError):
        ReversalService.reverse_payment(db_session, payment_id, settings=settings)

    assert _bill_state(db_session, bill_id)[3] == 60000
    assert db_session.get(models.Payment, payment_id) is not None
    events = (
        db_session.query(models.OperationalMetricEvent)
        .filter_by(event_type="ledger.reversal_integrity_violation")
        .all()
    )
    assert len(events) == 1


def test_reversal_writes_a_deleted_audit_row(db_session, seed_unit, settings) -> None:
    unit = seed_unit["unit"]
    payment = _pay(db_session, unit, 120000, date(2025, 4, 1), settings)
    payment_id = payment.id

    ReversalService.reverse_payment(db_session, payment_id, settings=settings)

    actions = [
        row.action
        for row in db_session.query(models.PaymentAuditLog)
        .filter(models.PaymentAuditLog.payment_id == payment_id)
        .order_by(models.PaymentAuditLog.performed_at)
    ]
    assert sorted(action.value for action in actions) == ["created", "deleted"]
    assert db_session.get(models.Unit, unit.id).credit_balance == 0


def test_reversing_out_of_order_leaves_no_stale_penalty(db_session, seed_unit, settings) -> None:
    unit = seed_unit["unit"]
    bill_id = seed_unit["bill"].id
    first = _pay(db_session, unit, 60000, date(2025, 3, 1), settings)
    first_id = first.id
    second = _pay(db_session, unit, 49250, date(2025, 4, 1), settings)
    second_id = second.id

    ReversalService.reverse_payment(db_session, first_id, settings=settings)

    # the April recomputation still stands while its payment is on record
    assert _bill_state(db_session, bill_id) == (
        14250,
        4750,
        44500,
        49250,
        models.BillStatus.PARTIAL,
    )

    ReversalService.reverse_payment(db_session, second_id, settings=settings)

    assert _bill_state(db_session, bill_id) == (0, 0, 0, 0, models.BillStatus.UNPAID)
    assert db_session.get(models.Bill, bill_id).penalty_baseline_amount is None
