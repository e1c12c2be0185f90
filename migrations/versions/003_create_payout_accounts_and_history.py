"""Create payout_accounts and payment_history tables.

Revision ID: 003
Revises: 002
Create Date: 2026-10-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "payout_accounts",
        sa.Column("payout_account_id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("account_holder_name", sa.String(128), nullable=False),
        sa.Column("account_number", sa.String(34), nullable=False),
        sa.Column("ifsc_code", sa.String(11), nullable=False),
        sa.Column("bank_name", sa.String(128), nullable=False),
        sa.Column("upi_id", sa.String(128), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payout_accounts_user_id", "payout_accounts", ["user_id"])

    op.create_table(
        "payment_history",
        sa.Column("payment_history_id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.project_id", ondelete="RESTRICT"), nullable=True),
        sa.Column("milestone_id", sa.Uuid(), nullable=True),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("payment_id", sa.String(64), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column(
            "status",
            sa.Enum("created", "paid", "failed", name="paymentstatus"),
            nullable=False,
            server_default="created",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payment_history_user_id", "payment_history", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_history_user_id", table_name="payment_history")
    op.drop_table("payment_history")
    op.drop_index("ix_payout_accounts_user_id", table_name="payout_accounts")
    op.drop_table("payout_accounts")
    op.execute("DROP TYPE IF EXISTS paymentstatus")
