"""Project and Bid models. A project embeds its escrow account fields."""

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from freelance_escrow.database import Base


class EscrowStatus(enum.Enum):
    NOT_CREATED = "not_created"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Valid escrow transitions. COMPLETED is terminal; PENDING -> FAILED is the
# only back-edge and FAILED -> PENDING happens by recreating the hold.
ESCROW_TRANSITIONS: dict[EscrowStatus, set[EscrowStatus]] = {
    EscrowStatus.NOT_CREATED: {EscrowStatus.PENDING},
    EscrowStatus.PENDING: {EscrowStatus.COMPLETED, EscrowStatus.FAILED},
    EscrowStatus.COMPLETED: set(),
    EscrowStatus.FAILED: {EscrowStatus.PENDING},
}


def escrow_sources(target: EscrowStatus) -> list[EscrowStatus]:
    """States from which ``target`` may be entered."""
    return [src for src, targets in ESCROW_TRANSITIONS.items() if target in targets]


class BidStatus(enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Project(Base):
    __tablename__ = "projects"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    # Plain reference: bids.project_id already points back at this table.
    accepted_bid_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    escrow_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    escrow_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    escrow_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    escrow_status: Mapped[EscrowStatus] = mapped_column(
        Enum(EscrowStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=EscrowStatus.NOT_CREATED,
    )
    escrow_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    final_project_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    # Bumped by every payout claim. Claims for one project serialise on it.
    payout_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class Bid(Base):
    __tablename__ = "bids"

    bid_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.project_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    freelancer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[BidStatus] = mapped_column(
        Enum(BidStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=BidStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
