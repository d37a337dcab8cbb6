"""Append-only credit history for units."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, MinorUnits


class CreditReason(str, enum.Enum):
    """Why a unit's credit balance moved."""

    PAYMENT = "payment"
    REVERSAL = "reversal"
    ADJUSTMENT = "adjustment"


CREDIT_REASON_ENUM = Enum(
    CreditReason,
    name="credit_reason_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class CreditHistoryEntry(Base):
    """A signed movement of a unit's credit balance.

    Rows are never edited or deleted. ``payment_id`` is deliberately not a
    foreign key: the entry must outlive the payment it references once that
    payment has been reversed and removed.
    """

    __tablename__ = "credit_history_entries"
    __table_args__ = (
        Index("credit_history_unit_sequence_idx", "unit_id", "sequence", unique=True),
        Index("credit_history_payment_idx", "payment_id"),
    )

    id = Column("entry_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(
        GUID(),
        ForeignKey("units.unit_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence = Column(Integer, nullable=False)
    delta = Column(MinorUnits(), nullable=False)
    balance_after = Column(MinorUnits(), nullable=False)
    reason = Column(CREDIT_REASON_ENUM, nullable=False)
    payment_id = Column(GUID(), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    unit = relationship("Unit", back_populates="credit_history")

    def __repr__(self) -> str:
        return (
            f"<CreditHistoryEntry(unit_id={self.unit_id}, sequence={self.sequence}, "
            f"delta={self.delta}, reason={self.reason}, payment_id={self.payment_id})>"
        )
