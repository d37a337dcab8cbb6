"""Create the dues ledger tables"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

from backend.dues_ledger.db_types import GUID

revision = "20251017_0001"
down_revision = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "units",
        sa.Column("unit_id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False, unique=True),
        sa.Column("fiscal_year_start_month", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("grace_days", sa.Integer(), nullable=True),
        sa.Column("monthly_rate_percent", sa.Numeric(7, 4), nullable=True),
        sa.Column("compounding", sa.String(length=8), nullable=True),
        sa.Column("credit_draw_order", sa.String(length=13), nullable=True),
        sa.Column("credit_balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "fiscal_year_start_month >= 1 AND fiscal_year_start_month <= 12",
            name="ck_units_fiscal_start_month_range",
        ),
        sa.CheckConstraint(
            "grace_days IS NULL OR grace_days >= 0", name="ck_units_grace_days_non_negative"
        ),
        sa.CheckConstraint(
            "monthly_rate_percent IS NULL OR monthly_rate_percent >= 0",
            name="ck_units_rate_non_negative",
        ),
    )

    op.create_table(
        "bills",
        sa.Column("bill_id", GUID(), primary_key=True),
        sa.Column(
            "unit_id",
            GUID(),
            sa.ForeignKey("units.unit_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("period_key", sa.String(length=7), nullable=False),
        sa.Column("issued_on", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("base_charge_amount", sa.BigInteger(), nullable=False),
        sa.Column("penalty_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("penalty_paid_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("base_paid_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=7), nullable=False, server_default="unpaid"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("unit_id", "period_key", name="bills_unit_period_key"),
        sa.CheckConstraint("base_charge_amount >= 0", name="ck_bills_base_non_negative"),
        sa.CheckConstraint("penalty_amount >= 0", name="ck_bills_penalty_non_negative"),
        sa.CheckConstraint(
            "penalty_paid_amount >= 0 AND base_paid_amount >= 0",
            name="ck_bills_paid_parts_non_negative",
        ),
        sa.CheckConstraint(
            "paid_amount = penalty_paid_amount + base_paid_amount",
            name="ck_bills_paid_amount_split",
        ),
        sa.CheckConstraint(
            "paid_amount <= base_charge_amount + penalty_amount",
            name="ck_bills_paid_not_above_due",
        ),
    )
    op.create_index("ix_bills_unit_id", "bills", ["unit_id"])
    op.create_index("bills_unit_due_idx", "bills", ["unit_id", "due_date"])

    op.create_table(
        "payments",
        sa.Column("payment_id", GUID(), primary_key=True),
        sa.Column(
            "unit_id",
            GUID(),
            sa.ForeignKey("units.unit_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("credit_delta", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("recorded_by", sa.String(length=255), nullable=True),
        _timestamp("recorded_at"),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )
    op.create_index("payments_unit_date_idx", "payments", ["unit_id", "payment_date"])

    op.create_table(
        "payment_allocations",
        sa.Column("allocation_id", GUID(), primary_key=True),
        sa.Column(
            "payment_id",
            GUID(),
            sa.ForeignKey("payments.payment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column(
            "bill_id",
            GUID(),
            sa.ForeignKey("bills.bill_id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("target_kind", sa.String(length=7), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("penalty_before", sa.BigInteger(), nullable=True),
        sa.Column("penalty_after", sa.BigInteger(), nullable=True),
        sa.CheckConstraint("amount <> 0", name="ck_payment_allocations_amount_non_zero"),
        sa.CheckConstraint(
            "(target_kind = 'credit' AND bill_id IS NULL) "
            "OR (target_kind <> 'credit' AND bill_id IS NOT NULL AND amount > 0)",
            name="ck_payment_allocations_target_shape",
        ),
    )
    op.create_index(
        "payment_allocations_payment_seq_idx",
        "payment_allocations",
        ["payment_id", "sequence"],
        unique=True,
    )
    op.create_index("ix_payment_allocations_bill_id", "payment_allocations", ["bill_id"])

    op.create_table(
        "credit_history_entries",
        sa.Column("entry_id", GUID(), primary_key=True),
        sa.Column(
            "unit_id",
            GUID(),
            sa.ForeignKey("units.unit_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("delta", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.String(length=10), nullable=False),
        sa.Column("payment_id", GUID(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "credit_history_unit_sequence_idx",
        "credit_history_entries",
        ["unit_id", "sequence"],
        unique=True,
    )
    op.create_index("credit_history_payment_idx", "credit_history_entries", ["payment_id"])

    op.create_table(
        "payment_audit_log",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("payment_id", GUID(), nullable=False),
        sa.Column("unit_id", GUID(), nullable=False),
        sa.Column("action", sa.Enum("CREATED", "DELETED", name="paymentauditaction"), nullable=False),
        _timestamp("performed_at"),
        sa.Column("performed_by", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("snapshot", sa.JSON(), nullable=True),
    )
    op.create_index("ix_payment_audit_log_payment_id", "payment_audit_log", ["payment_id"])
    op.create_index("ix_payment_audit_log_unit_id", "payment_audit_log", ["unit_id"])

    op.create_table(
        "operational_metric_events",
        sa.Column("event_id", GUID(), primary_key=True),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("duration_ms", sa.Numeric(14, 3), nullable=True),
        sa.Column("labels", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("details", sa.JSON(), nullable=True),
        _timestamp("created_at"),
    )
    for column in ("event_type", "outcome", "created_at"):
        op.create_index(
            f"ix_operational_metric_events_{column}",
            "operational_metric_events",
            [column],
        )


def downgrade() -> None:
    for column in ("created_at", "outcome", "event_type"):
        op.drop_index(
            f"ix_operational_metric_events_{column}", table_name="operational_metric_events"
        )
    op.drop_table("operational_metric_events")

    op.drop_index("ix_payment_audit_log_unit_id", table_name="payment_audit_log")
    op.drop_index("ix_payment_audit_log_payment_id", table_name="payment_audit_log")
    op.drop_table("payment_audit_log")
    sa.Enum(name="paymentauditaction").drop(op.get_bind(), checkfirst=True)

    op.drop_index("credit_history_payment_idx", table_name="credit_history_entries")
    op.drop_index("credit_history_unit_sequence_idx", table_name="credit_history_entries")
    op.drop_table("credit_history_entries")

    op.drop_index("ix_payment_allocations_bill_id", table_name="payment_allocations")
    op.drop_index("payment_allocations_payment_seq_idx", table_name="payment_allocations")
    op.drop_table("payment_allocations")

    op.drop_index("payments_unit_date_idx", table_name="payments")
    op.drop_table("payments")

    op.drop_index("bills_unit_due_idx", table_name="bills")
    op.drop_index("ix_bills_unit_id", table_name="bills")
    op.drop_table("bills")

    op.drop_table("units")
