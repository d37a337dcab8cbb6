"""Bill categories, per-category penalty overrides and penalty baselines"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

from backend.dues_ledger.db_types import GUID

revision = "20251024_0002"
down_revision = "20251017_0001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    with op.batch_alter_table("bills") as batch:
        batch.add_column(
            sa.Column("category", sa.String(length=5), nullable=False, server_default="dues")
        )
        batch.add_column(sa.Column("penalty_baseline_amount", sa.BigInteger(), nullable=True))
        batch.drop_constraint("bills_unit_period_key", type_="unique")
        batch.create_unique_constraint(
            "bills_unit_category_period_key", ["unit_id", "category", "period_key"]
        )

    op.create_table(
        "unit_penalty_overrides",
        sa.Column("override_id", GUID(), primary_key=True),
        sa.Column(
            "unit_id",
            GUID(),
            sa.ForeignKey("units.unit_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=5), nullable=False),
        sa.Column("grace_days", sa.Integer(), nullable=True),
        sa.Column("monthly_rate_percent", sa.Numeric(7, 4), nullable=True),
        sa.Column("compounding", sa.String(length=8), nullable=True),
        sa.UniqueConstraint(
            "unit_id", "category", name="unit_penalty_overrides_unit_category"
        ),
        sa.CheckConstraint(
            "grace_days IS NULL OR grace_days >= 0",
            name="ck_unit_penalty_overrides_grace_non_negative",
        ),
        sa.CheckConstraint(
            "monthly_rate_percent IS NULL OR monthly_rate_percent >= 0",
            name="ck_unit_penalty_overrides_rate_non_negative",
        ),
    )
    op.create_index(
        "ix_unit_penalty_overrides_unit_id", "unit_penalty_overrides", ["unit_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_unit_penalty_overrides_unit_id", table_name="unit_penalty_overrides")
    op.drop_table("unit_penalty_overrides")

    with op.batch_alter_table("bills") as batch:
        batch.drop_constraint("bills_unit_category_period_key", type_="unique")
        batch.create_unique_constraint("bills_unit_period_key", ["unit_id", "period_key"])
        batch.drop_column("penalty_baseline_amount")
        batch.drop_column("category")
