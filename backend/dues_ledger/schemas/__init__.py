"""Expose Pydantic schemas for convenient imports."""

from .common import PaginatedResponse
from .payment import (
    AllocationLineRead,
    AllocationPlanRead,
    BillOutcomeRead,
    PaymentAllocationRead,
    PaymentCreate,
    PaymentListResponse,
    PaymentPreviewRequest,
    PaymentRead,
)
from .unit import (
    BillListResponse,
    BillRead,
    CreditAdjustmentCreate,
    CreditBalanceRead,
    CreditHistoryEntryRead,
)

__all__ = [
    "AllocationLineRead",
    "AllocationPlanRead",
    "BillListResponse",
    "BillOutcomeRead",
    "BillRead",
    "CreditAdjustmentCreate",
    "CreditBalanceRead",
    "CreditHistoryEntryRead",
    "PaginatedResponse",
    "PaymentAllocationRead",
    "PaymentCreate",
    "PaymentListResponse",
    "PaymentPreviewRequest",
    "PaymentRead",
]
