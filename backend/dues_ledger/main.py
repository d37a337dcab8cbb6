"""Expose the dues ledger FastAPI app."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .env import read_bool_env
from .migrations import run_database_migrations
from .routers import payments_router, units_router

LOGGER = logging.getLogger(__name__)

RUN_MIGRATIONS_ENV = "RUN_DB_MIGRATIONS"


def ensure_database_is_ready() -> None:
    """Apply pending database migrations when the service starts."""

    if not read_bool_env(RUN_MIGRATIONS_ENV, True):
        LOGGER.info("Database migrations disabled via %s", RUN_MIGRATIONS_ENV)
        return
    LOGGER.info("Ensuring database schema is up to date before serving requests")
    run_database_migrations()


@asynccontextmanager
async def lifespan(_: FastAPI):
    ensure_database_is_ready()
    yield


app = FastAPI(title="Dues Ledger API", lifespan=lifespan)

app.include_router(payments_router, prefix="/payments", tags=["payments"])
app.include_router(units_router, prefix="/units", tags=["units"])


@app.get("/", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
