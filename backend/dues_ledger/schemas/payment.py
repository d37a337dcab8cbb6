from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.bill import BillCategory, BillStatus
from ..models.payment import AllocationTargetKind
from ..models.unit import CreditDrawOrder
from ..services.allocation import AllocationPlan
from .common import PaginatedResponse


class PaymentBase(BaseModel):
    """Shared attributes for payment operations."""

    unit_id: str = Field(..., min_length=1, description="Unit receiving the payment")
    payment_date: date = Field(..., description="Date the money was received")


class PaymentCreate(PaymentBase):
    """Payload used to record a payment."""

    amount: int = Field(..., gt=0, strict=True, description="Amount in minor currency units")
    note: Optional[str] = Field(default=None, description="Optional note for the payment")
    recorded_by: Optional[str] = Field(default=None, description="User who captured the payment")


class PaymentPreviewRequest(PaymentBase):
    """Payload used to preview a payment; zero only recomputes penalties."""

    amount: int = Field(default=0, ge=0, strict=True, description="Amount in minor units")


class AllocationLineRead(BaseModel):
    target_kind: AllocationTargetKind
    amount: int
    bill_id: Optional[str] = None
    period_key: Optional[str] = None
    category: Optional[BillCategory] = None

    model_config = ConfigDict(from_attributes=True)


class BillOutcomeRead(BaseModel):
    bill_id: str
    period_key: str
    penalty_before: int
    penalty_after: int
    penalty_applied: int
    base_applied: int
    paid_amount_after: int
    status_after: BillStatus

    model_config = ConfigDict(from_attributes=True)


class AllocationPlanRead(BaseModel):
    """Planned effect of a payment, as returned by the preview endpoint."""

    payment_amount: int
    payment_date: date
    credit_draw_order: CreditDrawOrder
    credit_balance_before: int
    credit_balance_after: int
    credit_used: int
    credit_created: int
    credit_delta: int
    lines: list[AllocationLineRead]
    bill_outcomes: list[BillOutcomeRead]
    recomputed_penalties: dict[str, int]

    @classmethod
    def from_plan(cls, plan: AllocationPlan) -> "AllocationPlanRead":
        return cls(
            payment_amount=plan.payment_amount,
            payment_date=plan.payment_date,
            credit_draw_order=plan.credit_draw_order,
            credit_balance_before=plan.credit_balance_before,
            credit_balance_after=plan.credit_balance_after,
            credit_used=plan.credit_used,
            credit_created=plan.credit_created,
            credit_delta=plan.credit_delta,
            lines=[AllocationLineRead.model_validate(line) for line in plan.lines],
            bill_outcomes=[
                BillOutcomeRead.model_validate(outcome) for outcome in plan.bill_outcomes
            ],
            recomputed_penalties=dict(plan.recomputed_penalties),
        )


class PaymentAllocationRead(BaseModel):
    """One stored line of a payment's allocation recipe."""

    sequence: int
    target_kind: AllocationTargetKind
    amount: int
    bill_id: Optional[str] = None
    penalty_before: Optional[int] = None
    penalty_after: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentRead(PaymentBase):
    """Schema returned when reading payment data."""

    id: str
    amount: int
    credit_delta: int
    note: Optional[str] = None
    recorded_by: Optional[str] = None
    recorded_at: Optional[datetime] = None
    allocations: list[PaymentAllocationRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class PaymentListResponse(PaginatedResponse[PaymentRead]):
    """Paginated payment listing."""

    pass
