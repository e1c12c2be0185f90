"""Create users, projects and bids tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("public_key", sa.String(128), unique=True, nullable=False),
        sa.Column("display_name", sa.String(128), nullable=False),
        sa.Column(
            "role",
            sa.Enum("client", "freelancer", "admin", name="userrole"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("active", "suspended", name="userstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "projects",
        sa.Column("project_id", sa.Uuid(), primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("accepted_bid_id", sa.Uuid(), nullable=True),
        sa.Column("escrow_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("escrow_order_id", sa.String(64), nullable=True),
        sa.Column("escrow_payment_id", sa.String(64), nullable=True),
        sa.Column(
            "escrow_status",
            sa.Enum("not_created", "pending", "completed", "failed", name="escrowstatus"),
            nullable=False,
            server_default="not_created",
        ),
        sa.Column("escrow_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_project_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("payout_version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_projects_owner_id", "projects", ["owner_id"])

    op.create_table(
        "bids",
        sa.Column("bid_id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.project_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("freelancer_id", sa.Uuid(), sa.ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", "rejected", name="bidstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_bids_project_id", "bids", ["project_id"])


def downgrade() -> None:
    op.drop_index("ix_bids_project_id", table_name="bids")
    op.drop_table("bids")
    op.drop_index("ix_projects_owner_id", table_name="projects")
    op.drop_table("projects")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS bidstatus")
    op.execute("DROP TYPE IF EXISTS escrowstatus")
    op.execute("DROP TYPE IF EXISTS userstatus")
    op.execute("DROP TYPE IF EXISTS userrole")
