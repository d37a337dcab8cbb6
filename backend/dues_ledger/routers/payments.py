"""Router exposing payment related operations."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from .. import schemas
from ..config import EngineSettings, load_engine_settings
from ..database import get_db
from ..services import (
    LedgerError,
    LedgerService,
    PaymentRequest,
    PaymentServiceError,
    ReversalService,
)
from .errors import http_error_for

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post("/preview", response_model=schemas.AllocationPlanRead)
def preview_payment(
    payload: schemas.PaymentPreviewRequest,
    db: Session = Depends(get_db),
    settings: EngineSettings = Depends(load_engine_settings),
) -> schemas.AllocationPlanRead:
    """Show how a payment would be allocated without recording it."""

    request = PaymentRequest(
        unit_id=payload.unit_id, amount=payload.amount, payment_date=payload.payment_date
    )
    try:
        plan = LedgerService.preview_payment(db, request, settings=settings)
    except (ValueError, LookupError, LedgerError) as exc:
        raise http_error_for(exc) from exc
    return schemas.AllocationPlanRead.from_plan(plan)


@router.get("", response_model=schemas.PaymentListResponse)
def list_payments(
    db: Session = Depends(get_db),
    unit_id: Optional[str] = Query(None, description="Filter by unit identifier"),
    start_date: Optional[date] = Query(None, description="Return payments on or after this date"),
    end_date: Optional[date] = Query(None, description="Return payments on or before this date"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of records to return"),
) -> schemas.PaymentListResponse:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date cannot be after end_date",
        )

    items, total = LedgerService.list_payments(
        db,
        unit_id=unit_id,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return schemas.PaymentListResponse(items=items, total=total, limit=limit, skip=skip)


@router.post("", response_model=schemas.PaymentRead, status_code=status.HTTP_201_CREATED)
def create_payment(
    payment_in: schemas.PaymentCreate,
    db: Session = Depends(get_db),
    settings: EngineSettings = Depends(load_engine_settings),
) -> schemas.PaymentRead:
    """Record a payment, allocating it across the unit's open bills."""

    request = PaymentRequest(
        unit_id=payment_in.unit_id,
        amount=payment_in.amount,
        payment_date=payment_in.payment_date,
        note=payment_in.note,
        recorded_by=payment_in.recorded_by,
    )
    try:
        result = LedgerService.record_payment(db, request, settings=settings)
    except (ValueError, LookupError, LedgerError) as exc:
        raise http_error_for(exc) from exc

    LOGGER.info(
        "Payment created",
        extra={"unit_id": result.payment.unit_id, "payment_id": result.payment.id},
    )
    return schemas.PaymentRead.model_validate(result.payment)


@router.get("/{payment_id}", response_model=schemas.PaymentRead)
def get_payment(payment_id: str, db: Session = Depends(get_db)) -> schemas.PaymentRead:
    payment = LedgerService.get_payment(db, payment_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return payment


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    settings: EngineSettings = Depends(load_engine_settings),
) -> Response:
    """Reverse a payment exactly and remove it."""

    try:
        ReversalService.reverse_payment(db, payment_id, settings=settings)
    except PaymentServiceError as exc:
        LOGGER.exception("Failed to reverse payment", extra={"payment_id": payment_id})
        raise http_error_for(exc) from exc
    except (ValueError, LookupError, LedgerError) as exc:
        raise http_error_for(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
