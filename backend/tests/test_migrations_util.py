from __future__ import annotations

from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect, text

from backend.dues_ledger.database import Base
from backend.dues_ledger.migrations import run_database_migrations

BACKEND_DIR = Path(__file__).resolve().parents[1]


def _head_revision() -> str:
    config = Config(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    return ScriptDirectory.from_config(config).get_current_head()


def _stored_revision(url: str) -> str:
    engine = create_engine(url)
    try:
        with engine.connect() as connection:
            return connection.scalar(text("SELECT version_num FROM alembic_version"))
    finally:
        engine.dispose()


def test_migrations_create_the_ledger_schema(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'fresh.db'}"

    run_database_migrations(url)

    engine = create_engine(url)
    tables = set(inspect(engine).get_table_names())
    engine.dispose()
    assert {
        "units",
        "bills",
        "payments",
        "payment_allocations",
        "credit_history_entries",
        "payment_audit_log",
        "operational_metric_events",
        "unit_penalty_overrides",
    } <= tables
    assert _stored_revision(url) == _head_revision()


def test_existing_schema_without_alembic_metadata_is_stamped(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'current.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()

    run_database_migrations(url)

    assert _stored_revision(url) == _head_revision()
