from __future__ import annotations

import os
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the project root (which exposes the ``backend`` package) is on ``sys.path``
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# The in-memory schema is built from metadata; Alembic is exercised separately.
os.environ["RUN_DB_MIGRATIONS"] = "0"

from backend.dues_ledger import models  # noqa: E402
from backend.dues_ledger.config import EngineSettings, category_env  # noqa: E402
from backend.dues_ledger.database import Base, get_db  # noqa: E402
from backend.dues_ledger.main import app  # noqa: E402


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings() -> EngineSettings:
    """Grace 0 days and 5% per period, matching the worked examples."""

    return EngineSettings(
        grace_days=0,
        monthly_rate_percent=Decimal("5"),
        retry_backoff_seconds=0,
    )


@pytest.fixture(autouse=True)
def _engine_env(monkeypatch) -> None:
    monkeypatch.setenv("PENALTY_GRACE_DAYS", "0")
    monkeypatch.setenv("PENALTY_MONTHLY_RATE_PERCENT", "5")
    monkeypatch.setenv("LEDGER_RETRY_BACKOFF_SECONDS", "0")
    for name in ("PENALTY_COMPOUNDING", "CREDIT_DRAW_ORDER", "LEDGER_MAX_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)
    for category in models.BillCategory:
        for setting in ("GRACE_DAYS", "MONTHLY_RATE_PERCENT", "COMPOUNDING"):
            monkeypatch.delenv(category_env(category, setting), raising=False)


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            db_session.expire_all()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_db, None)


def _make_bill(
    db: Session,
    unit: models.Unit,
    period_key: str,
    *,
    due_date: date,
    issued_on: date | None = None,
    base_charge_amount: int = 95000,
    category: models.BillCategory = models.BillCategory.DUES,
) -> models.Bill:
    bill = models.Bill(
        unit_id=unit.id,
        category=category,
        period_key=period_key,
        issued_on=issued_on or date(due_date.year, due_date.month, 1),
        due_date=due_date,
        base_charge_amount=base_charge_amount,
    )
    db.add(bill)
    db.commit()
    db.refresh(bill)
    return bill


@pytest.fixture
def seed_unit(db_session: Session) -> dict:
    unit = models.Unit(code="A-101", fiscal_year_start_month=1)
    db_session.add(unit)
    db_session.commit()
    db_session.refresh(unit)

    bill = _make_bill(
        db_session,
        unit,
        "2025-01",
        issued_on=date(2024, 12, 15),
        due_date=date(2025, 1, 1),
    )
    return {"unit": unit, "bill": bill}


@pytest.fixture
def bill_factory(db_session: Session):
    def factory(unit: models.Unit, period_key: str, **kwargs) -> models.Bill:
        return _make_bill(db_session, unit, period_key, **kwargs)

    return factory
