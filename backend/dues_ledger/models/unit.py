"""SQLAlchemy model for billable units and their ledger configuration."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, MinorUnits


class CompoundingMode(str, enum.Enum):
    """How penalties grow with each elapsed period."""

    FLAT = "flat"
    COMPOUND = "compound"


class CreditDrawOrder(str, enum.Enum):
    """Which source of funds is consumed first when settling bills."""

    PAYMENT_FIRST = "payment_first"
    CREDIT_FIRST = "credit_first"


COMPOUNDING_MODE_ENUM = Enum(
    CompoundingMode,
    name="compounding_mode_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)

CREDIT_DRAW_ORDER_ENUM = Enum(
    CreditDrawOrder,
    name="credit_draw_order_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class Unit(Base):
    """A property unit that owns bills, payments and a running credit balance.

    Penalty columns left as ``NULL`` fall back to the engine-wide defaults read
    from the environment. ``penalty_overrides`` narrow them per bill category.
    """

    __tablename__ = "units"
    __table_args__ = (
        CheckConstraint(
            "fiscal_year_start_month >= 1 AND fiscal_year_start_month <= 12",
            name="ck_units_fiscal_start_month_range",
        ),
        CheckConstraint(
            "grace_days IS NULL OR grace_days >= 0", name="ck_units_grace_days_non_negative"
        ),
        CheckConstraint(
            "monthly_rate_percent IS NULL OR monthly_rate_percent >= 0",
            name="ck_units_rate_non_negative",
        ),
    )

    id = Column("unit_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(64), nullable=False, unique=True)
    fiscal_year_start_month = Column(Integer, nullable=False, default=1)
    grace_days = Column(Integer, nullable=True)
    monthly_rate_percent = Column(Numeric(7, 4), nullable=True)
    compounding = Column(COMPOUNDING_MODE_ENUM, nullable=True)
    credit_draw_order = Column(CREDIT_DRAW_ORDER_ENUM, nullable=True)
    credit_balance = Column(MinorUnits(), nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    bills = relationship("Bill", back_populates="unit", order_by="Bill.due_date")
    payments = relationship("Payment", back_populates="unit")
    credit_history = relationship(
        "CreditHistoryEntry",
        back_populates="unit",
        order_by="CreditHistoryEntry.sequence",
    )
    penalty_overrides = relationship(
        "UnitPenaltyOverride",
        back_populates="unit",
        cascade="all, delete-orphan",
    )

    # Concurrent writers on the same unit race on this counter; the loser gets
    # a StaleDataError and retries from a fresh read.
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Unit(id={self.id}, code={self.code}, credit_balance={self.credit_balance})>"
