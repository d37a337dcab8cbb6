"""Router exposing per-unit credit and bill state."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..config import EngineSettings, load_engine_settings
from ..database import get_db
from ..services import LedgerError, LedgerService
from .errors import http_error_for

router = APIRouter()


def _credit_payload(db: Session, unit_id: str) -> schemas.CreditBalanceRead:
    history = LedgerService.credit_history(db, unit_id)
    unit = LedgerService.get_unit(db, unit_id)
    return schemas.CreditBalanceRead(
        unit_id=str(unit.id),
        credit_balance=unit.credit_balance,
        history=[schemas.CreditHistoryEntryRead.model_validate(entry) for entry in history],
    )


@router.get("/{unit_id}/credit", response_model=schemas.CreditBalanceRead)
def get_credit(unit_id: str, db: Session = Depends(get_db)) -> schemas.CreditBalanceRead:
    try:
        return _credit_payload(db, unit_id)
    except LookupError as exc:
        raise http_error_for(exc) from exc


@router.post(
    "/{unit_id}/credit-adjustments",
    response_model=schemas.CreditBalanceRead,
    status_code=status.HTTP_201_CREATED,
)
def adjust_credit(
    unit_id: str,
    adjustment: schemas.CreditAdjustmentCreate,
    db: Session = Depends(get_db),
    settings: EngineSettings = Depends(load_engine_settings),
) -> schemas.CreditBalanceRead:
    try:
        LedgerService.adjust_credit(
            db, unit_id, adjustment.delta, adjustment.note, settings=settings
        )
        return _credit_payload(db, unit_id)
    except (ValueError, LookupError, LedgerError) as exc:
        raise http_error_for(exc) from exc


@router.get("/{unit_id}/bills", response_model=schemas.BillListResponse)
def list_bills(
    unit_id: str,
    db: Session = Depends(get_db),
    bill_status: Optional[models.BillStatus] = Query(
        None, alias="status", description="Filter by settlement status"
    ),
    category: Optional[models.BillCategory] = Query(None, description="Filter by bill category"),
) -> schemas.BillListResponse:
    try:
        bills = LedgerService.list_bills(
            db, unit_id, status=bill_status, category=category
        )
    except LookupError as exc:
        raise http_error_for(exc) from exc
    return schemas.BillListResponse(
        items=[schemas.BillRead.model_validate(bill) for bill in bills], total=len(bills)
    )
