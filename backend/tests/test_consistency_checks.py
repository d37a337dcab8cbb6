from __future__ import annotations

from datetime import date

from backend.dues_ledger import models
from backend.dues_ledger.scripts import reconcile_ledger
from backend.dues_ledger.services.data_consistency import DataConsistencyService
from backend.dues_ledger.services.ledger import LedgerService, PaymentRequest
from backend.dues_ledger.services.reversal import ReversalService


def test_ledger_written_by_the_services_is_consistent(db_session, seed_unit, settings) -> None:
    unit = seed_unit["unit"]
    request = PaymentRequest(unit_id=unit.id, amount=120000, payment_date=date(2025, 4, 1))
    LedgerService.record_payment(db_session, request, settings=settings)
    LedgerService.adjust_credit(db_session, unit.id, -750, "fee", settings=settings)
    second = PaymentRequest(unit_id=unit.id, amount=500, payment_date=date(2025, 4, 2))
    payment = LedgerService.record_payment(db_session, second, settings=settings).payment
    ReversalService.reverse_payment(db_session, payment.id, settings=settings)

    snapshot = DataConsistencyService.ledger_snapshot(db_session)

    assert snapshot.is_clean


def test_credit_balance_drift_is_reported(db_session, seed_unit, settings) -> None:
    unit = seed_unit["unit"]
    LedgerService.adjust_credit(db_session, unit.id, 1000, settings=settings)

    db_session.expire_all()
    stored = db_session.get(models.Unit, unit.id)
    stored.credit_balance = 2500
    db_session.commit()

    mismatches = DataConsistencyService.credit_balance_mismatches(db_session)

    assert len(mismatches) == 1
    assert mismatches[0].stored_balance == 2500
    assert mismatches[0].history_total == 1000
    assert mismatches[0].last_balance_after == 1000


def test_payment_recipe_mismatch_is_reported(db_session, seed_unit, settings) -> None:
    unit = seed_unit["unit"]
    request = PaymentRequest(unit_id=unit.id, amount=60000, payment_date=date(2025, 4, 1))
    payment = LedgerService.record_payment(db_session, request, settings=settings).payment
    payment_id = payment.id

    db_session.delete(payment.allocations[0])
    db_session.commit()

    mismatches = DataConsistencyService.payment_recipe_mismatches(db_session)
    assert [(m.payment_id, m.amount, m.allocated_total) for m in mismatches] == [
        (payment_id, 60000, 45750)
    ]


def test_reconcile_script_exits_non_zero_in_strict_mode(monkeypatch, db_session) -> None:
    class _Scope:
        def __enter__(self):
            return db_session

        def __exit__(self, *exc):
            return False

    unit = models.Unit(code="B-202", credit_balance=10)
    db_session.add(unit)
    db_session.commit()

    monkeypatch.setattr(reconcile_ledger, "session_scope", _Scope)

    assert reconcile_ledger.main([]) == 0
    assert reconcile_ledger.main(["--strict", "--verbose"]) == 1


def test_leftover_penalty_baseline_is_reported(db_session, seed_unit) -> None:
    bill = seed_unit["bill"]
    bill.penalty_baseline_amount = 0
    db_session.commit()

    issues = DataConsistencyService.bill_issues(db_session)

    assert [(issue.bill_id, issue.problem) for issue in issues] == [
        (str(bill.id), "penalty baseline kept on a bill with nothing paid")
    ]
