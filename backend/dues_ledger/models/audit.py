"""Audit trail for payment operations."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, JSON, String, Text, func
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON

from ..database import Base
from ..db_types import GUID


class PaymentAuditAction(str, enum.Enum):
    """Actions recorded in the payment audit log."""

    CREATED = "created"
    DELETED = "deleted"


class PaymentAuditLog(Base):
    """Stores audit entries for payment operations.

    ``payment_id`` is kept as a plain column so the entries survive the
    deletion of the payment they describe.
    """

    __tablename__ = "payment_audit_log"

    id = Column(GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = Column(GUID(), nullable=False, index=True)
    unit_id = Column(GUID(), nullable=False, index=True)
    action = Column(Enum(PaymentAuditAction), nullable=False)
    performed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    performed_by = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    snapshot = Column(JSON().with_variant(SQLiteJSON(), "sqlite"), nullable=True)
