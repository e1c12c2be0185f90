"""Milestone model: deliverable units of an accepted bid."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from freelance_escrow.database import Base


class Milestone(Base):
    """Milestones are addressed by ``milestone_id``.

    ``position`` is a monotonic insertion sequence within the bid. A
    milestone's payout index is its rank when ordered by position; positions
    are never reused, so removals do not renumber stored rows.
    """

    __tablename__ = "milestones"
    __table_args__ = (
        UniqueConstraint("bid_id", "position", name="uq_milestones_bid_position"),
    )

    milestone_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    bid_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bids.bid_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Freelancer's own estimate. Informational only, never used for payouts.
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Payout claim: set before the gateway is called, cleared if the call fails.
    payment_initiated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_initiated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def payout_reference(self) -> str:
        """Gateway reference and idempotency key for this milestone's payout."""
        return f"ms_{self.milestone_id.hex}"
