"""SQLAlchemy model for periodic obligations owed by a unit."""

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
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, MinorUnits


class BillCategory(str, enum.Enum):
    """Which charge a bill belongs to; each category has its own penalty terms."""

    DUES = "dues"
    WATER = "water"


class BillStatus(str, enum.Enum):
    """Settlement state of a bill."""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


BILL_STATUS_ENUM = Enum(
    BillStatus,
    name="bill_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)

BILL_CATEGORY_ENUM = Enum(
    BillCategory,
    name="bill_category_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class Bill(Base):
    """One period's obligation for a unit: a base charge plus any penalty.

    ``paid_amount`` is always ``penalty_paid_amount + base_paid_amount``; the
    split is kept so allocations can tell outstanding penalty from principal.

    ``penalty_baseline_amount`` holds the penalty the bill carried before the
    first payment still on record touched it, and is cleared once the last
    such payment is reversed.
    """

    __tablename__ = "bills"
    __table_args__ = (
        UniqueConstraint(
            "unit_id", "category", "period_key", name="bills_unit_category_period_key"
        ),
        CheckConstraint("base_charge_amount >= 0", name="ck_bills_base_non_negative"),
        CheckConstraint("penalty_amount >= 0", name="ck_bills_penalty_non_negative"),
        CheckConstraint(
            "penalty_paid_amount >= 0 AND base_paid_amount >= 0",
            name="ck_bills_paid_parts_non_negative",
        ),
        CheckConstraint(
            "paid_amount = penalty_paid_amount + base_paid_amount",
            name="ck_bills_paid_amount_split",
        ),
        CheckConstraint(
            "paid_amount <= base_charge_amount + penalty_amount",
            name="ck_bills_paid_not_above_due",
        ),
        Index("bills_unit_due_idx", "unit_id", "due_date"),
    )

    id = Column("bill_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(
        GUID(),
        ForeignKey("units.unit_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category = Column(BILL_CATEGORY_ENUM, nullable=False, default=BillCategory.DUES)
    period_key = Column(String(7), nullable=False)
    issued_on = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    base_charge_amount = Column(MinorUnits(), nullable=False)
    penalty_amount = Column(MinorUnits(), nullable=False, default=0)
    penalty_baseline_amount = Column(MinorUnits(), nullable=True)
    penalty_paid_amount = Column(MinorUnits(), nullable=False, default=0)
    base_paid_amount = Column(MinorUnits(), nullable=False, default=0)
    paid_amount = Column(MinorUnits(), nullable=False, default=0)
    status = Column(BILL_STATUS_ENUM, nullable=False, default=BillStatus.UNPAID)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    unit = relationship("Unit", back_populates="bills")

    @property
    def total_due_amount(self) -> int:
        return (self.base_charge_amount or 0) + (self.penalty_amount or 0)

    def __repr__(self) -> str:
        return (
            f"<Bill(id={self.id}, unit_id={self.unit_id}, category={self.category}, "
            f"period_key={self.period_key}, "
            f"base={self.base_charge_amount}, penalty={self.penalty_amount}, "
            f"paid={self.paid_amount}, status={self.status})>"
        )
