from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.bill import BillCategory, BillStatus
from ..models.credit import CreditReason


class BillRead(BaseModel):
    """Current state of a bill."""

    id: str
    unit_id: str
    category: BillCategory
    period_key: str
    issued_on: date
    due_date: date
    base_charge_amount: int
    penalty_amount: int
    penalty_paid_amount: int
    base_paid_amount: int
    paid_amount: int
    total_due_amount: int
    status: BillStatus

    model_config = ConfigDict(from_attributes=True)


class BillListResponse(BaseModel):
    items: list[BillRead]
    total: int


class CreditHistoryEntryRead(BaseModel):
    sequence: int
    delta: int
    balance_after: int
    reason: CreditReason
    payment_id: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CreditBalanceRead(BaseModel):
    """A unit's credit balance with the history that produced it."""

    unit_id: str
    credit_balance: int
    history: list[CreditHistoryEntryRead]


class CreditAdjustmentCreate(BaseModel):
    """Manual correction of a unit's credit balance."""

    delta: int = Field(..., strict=True, description="Signed amount in minor currency units")
    note: Optional[str] = Field(default=None, description="Reason for the adjustment")

    @field_validator("delta")
    @classmethod
    def _reject_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("delta must not be zero")
        return value
