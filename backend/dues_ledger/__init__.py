"""Dues ledger: payment allocation, penalty recalculation and reversal."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .main import app as fastapi_app


def get_app():
    """Return the FastAPI application without importing it eagerly.

    Alembic and the reconciliation script import this package without
    needing FastAPI or the routers.
    """

    from .main import app as fastapi_app

    return fastapi_app


__all__ = ["get_app"]
