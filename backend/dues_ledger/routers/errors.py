"""Translate ledger exceptions into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..services.errors import (
    DataIntegrityError,
    LedgerConflictError,
    PaymentNotFoundError,
    PaymentServiceError,
    UnitNotFoundError,
)

LOGGER = logging.getLogger(__name__)


def http_error_for(exc: Exception) -> HTTPException:
    """Map a service exception to the HTTP error the API reports for it."""

    if isinstance(exc, (UnitNotFoundError, PaymentNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, LedgerConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "retryable": True},
        )
    if isinstance(exc, DataIntegrityError):
        LOGGER.error("Ledger data integrity violation: %s", exc)
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": str(exc), "retryable": False, "requires_operator": True},
        )
    if isinstance(exc, PaymentServiceError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="The ledger could not be updated. Please try again later.",
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
