"""Create milestones table.

Revision ID: 002
Revises: 001
Create Date: 2026-10-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "milestones",
        sa.Column("milestone_id", sa.Uuid(), primary_key=True),
        sa.Column("bid_id", sa.Uuid(), sa.ForeignKey("bids.bid_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("payment_initiated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_initiated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_released", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_id", sa.String(64), nullable=True),
        sa.Column("payment_released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("bid_id", "position", name="uq_milestones_bid_position"),
    )
    op.create_index("ix_milestones_bid_id", "milestones", ["bid_id"])


def downgrade() -> None:
    op.drop_index("ix_milestones_bid_id", table_name="milestones")
    op.drop_table("milestones")
