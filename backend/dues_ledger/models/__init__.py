"""Expose SQLAlchemy models for convenient imports."""

from .audit import PaymentAuditAction, PaymentAuditLog
from .bill import Bill, BillCategory, BillStatus
from .credit import CreditHistoryEntry, CreditReason
from .operational_metric import OperationalMetricEvent
from .payment import AllocationTargetKind, Payment, PaymentAllocation
from .penalty_override import UnitPenaltyOverride
from .unit import CompoundingMode, CreditDrawOrder, Unit

__all__ = [
    "AllocationTargetKind",
    "Bill",
    "BillCategory",
    "BillStatus",
    "CompoundingMode",
    "CreditDrawOrder",
    "CreditHistoryEntry",
    "CreditReason",
    "OperationalMetricEvent",
    "Payment",
    "PaymentAllocation",
    "PaymentAuditAction",
    "PaymentAuditLog",
    "Unit",
    "UnitPenaltyOverride",
]
