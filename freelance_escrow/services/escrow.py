"""Escrow orchestration: fund, verify, reset, and milestone payout release.

Every guard runs before the gateway is called. Status changes are single
conditional UPDATEs restricted to the legal source states, so the database
row is the serialisation point for concurrent requests.
"""

import logging
import time
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.auth.context import CallerContext
from freelance_escrow.config import settings
from freelance_escrow.errors import (
    Conflict,
    FailedPrecondition,
    InvalidArgument,
    NotFound,
    ServiceUnavailable,
)
from freelance_escrow.models.milestone import Milestone
from freelance_escrow.models.payment import PaymentStatus
from freelance_escrow.models.project import (
    BidStatus,
    EscrowStatus,
    Project,
    escrow_sources,
)
from freelance_escrow.schemas.escrow import EscrowStatusResponse
from freelance_escrow.services.gateway import GatewayError, PaymentGateway
from freelance_escrow.services.milestones import summarize
from freelance_escrow.services.payment_history import record_payment
from freelance_escrow.services.payout_destinations import DestinationLookup
from freelance_escrow.services.payouts import amount_for
from freelance_escrow.services.projects import (
    assert_can_view,
    assert_owner,
    find_accepted_bid,
    get_accepted_bid,
    get_project,
    locate_milestone,
    ordered_milestones,
)

logger = logging.getLogger(__name__)


def _receipt(project_id: uuid.UUID) -> str:
    # Gateway receipts are capped at 40 characters.
    return f"escrow_{project_id.hex[-8:]}_{int(time.time() * 1000) % 10**8:08d}"


async def _transition(
    db: AsyncSession,
    project: Project,
    target: EscrowStatus,
    extra_criteria: list | None = None,
    **values: object,
) -> None:
    """Move the escrow to ``target`` if it is still in a legal source state."""
    criteria = [
        Project.project_id == project.project_id,
        Project.escrow_status.in_(escrow_sources(target)),
        *(extra_criteria or []),
    ]
    result = await db.execute(
        update(Project).where(*criteria).values(escrow_status=target, **values)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Escrow status changed concurrently, please retry")


async def create_escrow_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    destinations: DestinationLookup,
    caller: CallerContext,
    project_id: uuid.UUID,
    final_amount: Decimal,
) -> tuple[Project, str]:
    """Open a funds hold for the project. Returns (project, gateway order id).

    The four escrow fields are written in one statement, and only after the
    gateway has accepted the order.
    """
    project = await get_project(db, project_id)
    assert_owner(project, caller, "create an escrow payment")

    if final_amount is None or final_amount <= 0:
        raise InvalidArgument("final_amount must be greater than zero")
    if final_amount > settings.max_escrow_amount:
        raise InvalidArgument(f"final_amount cannot exceed {settings.max_escrow_amount}")

    bid = await find_accepted_bid(db, project)
    if bid is None or bid.status != BidStatus.ACCEPTED:
        raise FailedPrecondition("Project must have an accepted bid to create an escrow payment")

    if project.escrow_status in (EscrowStatus.PENDING, EscrowStatus.COMPLETED):
        raise Conflict("Escrow payment already exists for this project")

    destination = await destinations.get_primary_verified_destination(bid.freelancer_id)
    if destination is None:
        raise FailedPrecondition(
            "Freelancer must add a verified primary bank account before escrow can be created"
        )

    currency = settings.escrow_currency
    try:
        order_id = await gateway.create_order(
            final_amount,
            currency,
            _receipt(project.project_id),
            {
                "project_id": str(project.project_id),
                "bid_id": str(bid.bid_id),
                "freelancer_id": str(bid.freelancer_id),
                "type": "escrow",
            },
        )
    except GatewayError as e:
        logger.error("Escrow order failed for project %s: %s", project.project_id, e)
        raise ServiceUnavailable("Failed to create escrow payment", cause=str(e))

    await _transition(
        db, project, EscrowStatus.PENDING,
        escrow_amount=final_amount,
        escrow_order_id=order_id,
        final_project_amount=final_amount,
        escrow_payment_id=None,
        escrow_verified_at=None,
    )
    record_payment(
        db, caller.user_id, order_id, None, final_amount, currency,
        PaymentStatus.CREATED, project_id=project.project_id,
    )
    await db.commit()
    await db.refresh(project)

    logger.info("Escrow created for project %s: order %s, amount %s", project.project_id, order_id, final_amount)
    return project, order_id


async def verify_escrow_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    caller: CallerContext,
    project_id: uuid.UUID,
    payment_id: str,
    signature: str,
) -> Project:
    """Confirm the client paid the hold. Signature mismatch changes nothing."""
    project = await get_project(db, project_id)
    assert_owner(project, caller, "verify the escrow payment")

    if project.escrow_status == EscrowStatus.COMPLETED:
        raise Conflict("Escrow payment is already verified")
    if project.escrow_status != EscrowStatus.PENDING or not project.escrow_order_id:
        raise NotFound("No pending escrow payment for this project")
    if not payment_id or not signature:
        raise InvalidArgument("payment_id and signature are required")

    order_id = project.escrow_order_id
    if not gateway.verify_signature(order_id, payment_id, signature):
        raise InvalidArgument("Invalid payment signature")

    now = datetime.now(UTC)
    await _transition(
        db, project, EscrowStatus.COMPLETED,
        extra_criteria=[Project.escrow_order_id == order_id],
        escrow_payment_id=payment_id,
        escrow_verified_at=now,
    )
    record_payment(
        db, caller.user_id, order_id, payment_id, project.escrow_amount,
        settings.escrow_currency, PaymentStatus.PAID, project_id=project.project_id,
    )
    await db.commit()
    await db.refresh(project)

    logger.info("Escrow verified for project %s: payment %s", project.project_id, payment_id)
    return project


async def reset_escrow_status(
    db: AsyncSession, caller: CallerContext, project_id: uuid.UUID
) -> Project:
    """Abandon an unpaid hold (pending -> failed) so a new one can be opened."""
    project = await get_project(db, project_id)
    assert_owner(project, caller, "reset the escrow status")

    if project.escrow_status != EscrowStatus.PENDING:
        raise Conflict(
            f"Cannot reset escrow status. Current status: {project.escrow_status.value}"
        )

    await _transition(db, project, EscrowStatus.FAILED)
    await db.commit()
    await db.refresh(project)

    logger.info("Escrow reset to failed for project %s", project.project_id)
    return project


async def get_escrow_status(
    db: AsyncSession, caller: CallerContext, project_id: uuid.UUID
) -> EscrowStatusResponse:
    project = await get_project(db, project_id)
    bid = await find_accepted_bid(db, project)
    assert_can_view(project, bid, caller)

    milestones = await ordered_milestones(db, bid.bid_id) if bid is not None else []
    released = [m for m in milestones if m.payment_released]
    released_amount = sum((m.payment_amount or Decimal("0") for m in released), Decimal("0"))
    final_amount = project.final_project_amount or Decimal("0")

    return EscrowStatusResponse(
        project_id=project.project_id,
        project_title=project.title,
        escrow_amount=project.escrow_amount or Decimal("0"),
        final_project_amount=final_amount,
        escrow_status=project.escrow_status.value,
        escrow_verified_at=project.escrow_verified_at,
        milestones=summarize(milestones, project.final_project_amount),
        total_milestones=len(milestones),
        completed_milestones=sum(1 for m in milestones if m.is_completed),
        released_payments=len(released),
        released_amount=released_amount,
        remaining_amount=final_amount - released_amount,
    )


# ---------------------------------------------------------------------------
# Milestone payout release
# ---------------------------------------------------------------------------


def _claim_cutoff() -> datetime:
    return datetime.now(UTC) - timedelta(seconds=settings.payout_claim_timeout_seconds)


async def _payout_ledger(
    db: AsyncSession, project: Project, bid_id: uuid.UUID
) -> tuple[int, Decimal]:
    """Current payout version and the escrow already committed to payouts.

    A milestone carries a ``payment_amount`` from the moment its payout is
    claimed until the claim is dropped, so released and in-flight payouts are
    both counted. Both values are read from the database, not the session.
    """
    version = (
        await db.execute(
            select(Project.payout_version).where(Project.project_id == project.project_id)
        )
    ).scalar_one()
    amounts = (
        await db.execute(
            select(Milestone.payment_amount).where(
                Milestone.bid_id == bid_id, Milestone.payment_amount.is_not(None)
            )
        )
    ).scalars()
    return version, sum(amounts, Decimal("0"))


def _payout_amount(
    project: Project, index: int, count: int, committed: Decimal
) -> Decimal:
    remaining = project.final_project_amount - committed
    if remaining <= 0:
        raise Conflict("All escrow funds have already been released")
    allocated = amount_for(index, count, project.final_project_amount)
    if allocated <= 0:
        raise FailedPrecondition(
            "Milestone payout rounds to zero; the escrow is too small for this many milestones"
        )
    return min(allocated, remaining)


async def _claim_payout(
    db: AsyncSession,
    project: Project,
    milestone: Milestone,
    amount: Decimal,
    seen_version: int | None,
) -> None:
    """Atomically mark the milestone's payout as initiated and reserve ``amount``.

    A claim older than the claim timeout counts as abandoned and may be taken
    over with the amount it already reserved; the payout reference is stable,
    so the gateway deduplicates a payout that was in fact issued before the
    claimant died. A new reservation (``seen_version`` given) also bumps the
    project's payout version, so two reservations computed from the same
    committed total cannot both succeed.
    """
    if seen_version is None:
        reserved = Milestone.payment_amount == amount
    else:
        reserved = Milestone.payment_amount.is_(None)
    result = await db.execute(
        update(Milestone)
        .where(
            Milestone.milestone_id == milestone.milestone_id,
            Milestone.is_completed.is_(True),
            Milestone.payment_released.is_(False),
            reserved,
            or_(
                Milestone.payment_initiated.is_(False),
                and_(
                    Milestone.payment_initiated.is_(True),
                    Milestone.payment_initiated_at < _claim_cutoff(),
                ),
            ),
        )
        .values(
            payment_initiated=True,
            payment_initiated_at=datetime.now(UTC),
            payment_amount=amount,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("A payout for this milestone is already in progress")

    if seen_version is not None:
        result = await db.execute(
            update(Project)
            .where(
                Project.project_id == project.project_id,
                Project.escrow_status == EscrowStatus.COMPLETED,
                Project.payout_version == seen_version,
            )
            .values(payout_version=seen_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise Conflict("Escrow payouts changed concurrently, please retry")
    await db.commit()


async def _drop_claim(db: AsyncSession, milestone: Milestone) -> None:
    await db.execute(
        update(Milestone)
        .where(
            Milestone.milestone_id == milestone.milestone_id,
            Milestone.payment_released.is_(False),
        )
        .values(payment_initiated=False, payment_initiated_at=None, payment_amount=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def release_milestone_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    destinations: DestinationLookup,
    caller: CallerContext,
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
) -> tuple[Milestone, str]:
    """Pay the freelancer for one completed milestone. Returns (milestone, payout id).

    The amount is the allocator's share for the milestone's current index,
    capped at what the escrow still holds once released and in-flight payouts
    are subtracted. Safe to re-invoke: a released milestone is rejected up
    front and the payout claim keeps concurrent callers from paying twice.
    """
    project = await get_project(db, project_id)
    assert_owner(project, caller, "release milestone payments")

    if project.escrow_status != EscrowStatus.COMPLETED:
        raise Conflict("Escrow payment must be completed before releasing milestone payments")
    if not project.final_project_amount or project.final_project_amount <= 0:
        raise FailedPrecondition("Project final amount is not set")

    bid = await get_accepted_bid(db, project)
    milestones = await ordered_milestones(db, bid.bid_id)
    index, milestone = locate_milestone(milestones, milestone_id)

    if not milestone.is_completed:
        raise Conflict("Milestone must be completed before releasing payment")
    if milestone.payment_released:
        raise Conflict("Payment for this milestone has already been released")

    seen_version: int | None
    if milestone.payment_initiated and milestone.payment_amount is not None:
        # Resuming an abandoned claim: its amount is already reserved.
        amount, seen_version = milestone.payment_amount, None
    else:
        seen_version, committed = await _payout_ledger(db, project, bid.bid_id)
        amount = _payout_amount(project, index, len(milestones), committed)

    destination = await destinations.get_primary_verified_destination(bid.freelancer_id)
    if destination is None:
        raise FailedPrecondition("Freelancer has no verified primary bank account on file")

    await _claim_payout(db, project, milestone, amount, seen_version)

    currency = settings.escrow_currency
    try:
        payout_id = await gateway.create_payout(
            destination, amount, currency, milestone.payout_reference
        )
    except GatewayError as e:
        logger.warning(
            "Payout failed for milestone %s on project %s, claim released: %s",
            milestone.milestone_id, project.project_id, e,
        )
        await _drop_claim(db, milestone)
        raise ServiceUnavailable("Failed to release milestone payment", cause=str(e))

    now = datetime.now(UTC)
    result = await db.execute(
        update(Milestone)
        .where(
            Milestone.milestone_id == milestone.milestone_id,
            Milestone.payment_initiated.is_(True),
            Milestone.payment_released.is_(False),
        )
        .values(
            payment_released=True,
            payment_amount=amount,
            payment_id=payout_id,
            payment_released_at=now,
            updated_at=now,
        )
    )
    if result.rowcount != 1:
        # Another claimant finished first; the shared reference made the gateway
        # return the same payout, so there is nothing left to record.
        await db.rollback()
        raise Conflict("Payment for this milestone has already been released")

    record_payment(
        db, bid.freelancer_id, milestone.payout_reference, payout_id, amount, currency,
        PaymentStatus.PAID, project_id=project.project_id, milestone_id=milestone.milestone_id,
    )
    await db.commit()
    await db.refresh(milestone)

    logger.info(
        "Milestone %s payout %s released: %s %s (index %d of %d)",
        milestone.milestone_id, payout_id, amount, currency, index, len(milestones),
    )
    return milestone, payout_id
