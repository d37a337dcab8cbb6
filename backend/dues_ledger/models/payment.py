"""SQLAlchemy models for recorded payments and their allocation recipe."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, MinorUnits


class AllocationTargetKind(str, enum.Enum):
    """What portion of an obligation an allocation line settles."""

    PENALTY = "penalty"
    BASE = "base"
    CREDIT = "credit"


ALLOCATION_TARGET_KIND_ENUM = Enum(
    AllocationTargetKind,
    name="allocation_target_kind_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class Payment(Base):
    """A payment received for a unit.

    The ordered ``allocations`` are the reversal recipe and are written once,
    together with the payment, and never modified afterwards.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("payments_unit_date_idx", "unit_id", "payment_date"),
    )

    id = Column("payment_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(
        GUID(),
        ForeignKey("units.unit_id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount = Column(MinorUnits(), nullable=False)
    payment_date = Column(Date, nullable=False)
    credit_delta = Column(MinorUnits(), nullable=False, default=0)
    note = Column(Text, nullable=True)
    recorded_by = Column(String(255), nullable=True)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    unit = relationship("Unit", back_populates="payments")
    allocations = relationship(
        "PaymentAllocation",
        back_populates="payment",
        order_by="PaymentAllocation.sequence",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, unit_id={self.unit_id}, amount={self.amount}, "
            f"payment_date={self.payment_date}, credit_delta={self.credit_delta})>"
        )


class PaymentAllocation(Base):
    """One line of a payment's allocation recipe.

    Bill lines keep the bill's penalty before and after recomputation so the
    reversal can put the penalty back without recalculating it.
    """

    __tablename__ = "payment_allocations"
    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_payment_allocations_amount_non_zero"),
        CheckConstraint(
            "(target_kind = 'credit' AND bill_id IS NULL) "
            "OR (target_kind <> 'credit' AND bill_id IS NOT NULL AND amount > 0)",
            name="ck_payment_allocations_target_shape",
        ),
        Index("payment_allocations_payment_seq_idx", "payment_id", "sequence", unique=True),
    )

    id = Column("allocation_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = Column(
        GUID(),
        ForeignKey("payments.payment_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence = Column(Integer, nullable=False)
    bill_id = Column(
        GUID(),
        ForeignKey("bills.bill_id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    target_kind = Column(ALLOCATION_TARGET_KIND_ENUM, nullable=False)
    amount = Column(MinorUnits(), nullable=False)
    penalty_before = Column(MinorUnits(), nullable=True)
    penalty_after = Column(MinorUnits(), nullable=True)

    payment = relationship("Payment", back_populates="allocations")
    bill = relationship("Bill")
