"""Engine and session factory backing the ledger."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from .env import read_bool_env, read_float_env, read_int_env

LOGGER = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "dues_ledger.db"
REQUIRE_POSTGRES_ENV = "REQUIRE_POSTGRES"
ISOLATION_LEVEL_ENV = "DATABASE_ISOLATION_LEVEL"
SQLITE_LOCK_WAIT_ENV = "SQLITE_LOCK_WAIT_SECONDS"
POOL_SIZE_ENV = "DATABASE_POOL_SIZE"
POOL_MAX_OVERFLOW_ENV = "DATABASE_MAX_OVERFLOW"

# Unit rows are locked FOR UPDATE, so READ COMMITTED already serializes
# writers per unit. SERIALIZABLE is accepted; its 40001 failures are retried.
_ISOLATION_LEVELS = {"READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE"}
DEFAULT_ISOLATION_LEVEL = "READ COMMITTED"
DEFAULT_SQLITE_LOCK_WAIT = 5.0


def _resolve_database_url(raw_url: str | None) -> str:
    require_postgres = read_bool_env(REQUIRE_POSTGRES_ENV, False)
    if not raw_url:
        if require_postgres:
            raise RuntimeError("DATABASE_URL must point at PostgreSQL when REQUIRE_POSTGRES=1")
        _DEFAULT_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{_DEFAULT_DB_PATH.as_posix()}"

    url = make_url(raw_url)
    is_sqlite = url.drivername.startswith("sqlite")
    if is_sqlite and require_postgres:
        raise RuntimeError("SQLite is not permitted when REQUIRE_POSTGRES=1")
    if is_sqlite and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return url.render_as_string(hide_password=False)


def _isolation_level() -> str:
    level = (os.getenv(ISOLATION_LEVEL_ENV) or DEFAULT_ISOLATION_LEVEL).strip().upper()
    if level not in _ISOLATION_LEVELS:
        raise ValueError(
            f"{ISOLATION_LEVEL_ENV} must be one of: {', '.join(sorted(_ISOLATION_LEVELS))}"
        )
    return level


def engine_options(database_url: str) -> Dict[str, Any]:
    """Connection options for the ledger's database backend."""

    if database_url.startswith("sqlite"):
        # SQLite locks the whole file; writers wait this long before the
        # "database is locked" error reaches the ledger's retry loop.
        return {
            "connect_args": {
                "check_same_thread": False,
                "timeout": read_float_env(SQLITE_LOCK_WAIT_ENV, DEFAULT_SQLITE_LOCK_WAIT),
            }
        }
    return {
        "pool_pre_ping": True,
        "pool_size": read_int_env(POOL_SIZE_ENV, 5, minimum=1),
        "max_overflow": read_int_env(POOL_MAX_OVERFLOW_ENV, 10),
        "isolation_level": _isolation_level(),
    }


SQLALCHEMY_DATABASE_URL = _resolve_database_url(os.getenv("DATABASE_URL"))

engine = create_engine(SQLALCHEMY_DATABASE_URL, **engine_options(SQLALCHEMY_DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

LOGGER.info("Ledger database engine ready", extra={"dialect": engine.dialect.name})

Base = declarative_base()


def get_db() -> Generator:
    """Yield a database session and ensure it is closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Generator:
    """Transactional scope for CLIs running outside a request."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
