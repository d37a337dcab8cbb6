"""Per-unit penalty terms for a single bill category."""

from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID
from .bill import BILL_CATEGORY_ENUM
from .unit import COMPOUNDING_MODE_ENUM


class UnitPenaltyOverride(Base):
    """Overrides one category's grace, rate or compounding for one unit.

    ``NULL`` columns inherit from the unit's own columns and then from the
    engine defaults for that category.
    """

    __tablename__ = "unit_penalty_overrides"
    __table_args__ = (
        UniqueConstraint("unit_id", "category", name="unit_penalty_overrides_unit_category"),
        CheckConstraint(
            "grace_days IS NULL OR grace_days >= 0",
            name="ck_unit_penalty_overrides_grace_non_negative",
        ),
        CheckConstraint(
            "monthly_rate_percent IS NULL OR monthly_rate_percent >= 0",
            name="ck_unit_penalty_overrides_rate_non_negative",
        ),
    )

    id = Column("override_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(
        GUID(),
        ForeignKey("units.unit_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category = Column(BILL_CATEGORY_ENUM, nullable=False)
    grace_days = Column(Integer, nullable=True)
    monthly_rate_percent = Column(Numeric(7, 4), nullable=True)
    compounding = Column(COMPOUNDING_MODE_ENUM, nullable=True)

    unit = relationship("Unit", back_populates="penalty_overrides")

    def __repr__(self) -> str:
        return (
            f"<UnitPenaltyOverride(unit_id={self.unit_id}, category={self.category}, "
            f"grace_days={self.grace_days}, rate={self.monthly_rate_percent})>"
        )
