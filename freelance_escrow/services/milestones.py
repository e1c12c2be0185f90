"""Milestone ledger: add, modify, remove, complete, reject, list.

Mutations go through conditional UPDATE/DELETE statements so a concurrent
completion or payout claim always wins over a stale edit.
"""

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.auth.context import CallerContext
from freelance_escrow.errors import Conflict, InvalidArgument
from freelance_escrow.models.milestone import Milestone
from freelance_escrow.models.project import Bid, Project
from freelance_escrow.schemas.milestone import MilestoneLedger, MilestoneResponse
from freelance_escrow.services.payouts import allocate
from freelance_escrow.services.projects import (
    assert_assigned_freelancer,
    assert_can_view,
    assert_owner,
    find_accepted_bid,
    get_accepted_bid,
    get_project,
    locate_milestone,
    ordered_milestones,
)

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("title", "description", "amount", "due_date")
# May be set to None to clear them.
_CLEARABLE_FIELDS = ("description", "due_date")


async def _freelancer_scope(
    db: AsyncSession, caller: CallerContext, project_id: uuid.UUID, action: str
) -> tuple[Project, Bid]:
    project = await get_project(db, project_id)
    bid = await get_accepted_bid(db, project)
    assert_assigned_freelancer(bid, caller, action)
    return project, bid


async def _find(
    db: AsyncSession, bid: Bid, milestone_id: uuid.UUID
) -> Milestone:
    _, milestone = locate_milestone(await ordered_milestones(db, bid.bid_id), milestone_id)
    return milestone


def _check_amount(amount: Decimal | None) -> None:
    if amount is None or amount <= 0:
        raise InvalidArgument("Milestone amount must be greater than zero")


async def add_milestone(
    db: AsyncSession,
    caller: CallerContext,
    project_id: uuid.UUID,
    title: str,
    amount: Decimal,
    description: str | None = None,
    due_date: datetime | None = None,
) -> Milestone:
    """Append a milestone to the accepted bid."""
    _, bid = await _freelancer_scope(db, caller, project_id, "add milestones")
    if not title or not title.strip():
        raise InvalidArgument("Milestone title is required")
    _check_amount(amount)

    result = await db.execute(
        select(func.coalesce(func.max(Milestone.position), -1)).where(
            Milestone.bid_id == bid.bid_id
        )
    )
    next_position = result.scalar() + 1

    milestone = Milestone(
        milestone_id=uuid.uuid4(),
        bid_id=bid.bid_id,
        position=next_position,
        title=title.strip(),
        description=description,
        amount=amount,
        due_date=due_date,
        is_completed=False,
        payment_initiated=False,
        payment_released=False,
    )
    db.add(milestone)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Milestones were changed concurrently, please retry")
    await db.refresh(milestone)
    return milestone


async def modify_milestone(
    db: AsyncSession,
    caller: CallerContext,
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
    **fields: object,
) -> Milestone:
    """Edit content fields of a milestone that is not yet completed."""
    _, bid = await _freelancer_scope(db, caller, project_id, "modify milestones")
    changes = {
        k: v for k, v in fields.items()
        if k in _EDITABLE_FIELDS and (v is not None or k in _CLEARABLE_FIELDS)
    }
    if not changes:
        raise InvalidArgument("No milestone fields to update")
    if "amount" in changes:
        _check_amount(changes["amount"])  # type: ignore[arg-type]
    if "title" in changes:
        title = str(changes["title"]).strip()
        if not title:
            raise InvalidArgument("Milestone title is required")
        changes["title"] = title

    milestone = await _find(db, bid, milestone_id)
    if milestone.is_completed:
        raise Conflict("Cannot modify a completed milestone")

    result = await db.execute(
        update(Milestone)
        .where(
            Milestone.milestone_id == milestone_id,
            Milestone.is_completed.is_(False),
            Milestone.payment_initiated.is_(False),
        )
        .values(**changes, updated_at=datetime.now(UTC))
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Milestone changed before the update could be applied")
    await db.commit()
    await db.refresh(milestone)
    return milestone


async def remove_milestone(
    db: AsyncSession,
    caller: CallerContext,
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
) -> None:
    """Delete a milestone. Later milestones move up one index."""
    _, bid = await _freelancer_scope(db, caller, project_id, "remove milestones")
    milestone = await _find(db, bid, milestone_id)
    if milestone.is_completed or milestone.payment_released or milestone.payment_initiated:
        raise Conflict("Cannot remove a completed or paid milestone")

    result = await db.execute(
        delete(Milestone).where(
            Milestone.milestone_id == milestone_id,
            Milestone.is_completed.is_(False),
            Milestone.payment_initiated.is_(False),
            Milestone.payment_released.is_(False),
        )
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Milestone changed before it could be removed")
    await db.commit()


async def complete_milestone(
    db: AsyncSession,
    caller: CallerContext,
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
    completion_notes: str | None = None,
) -> Milestone:
    """Freelancer marks a milestone as delivered."""
    _, bid = await _freelancer_scope(db, caller, project_id, "complete milestones")
    milestone = await _find(db, bid, milestone_id)
    if milestone.is_completed:
        raise Conflict("Milestone is already completed")

    result = await db.execute(
        update(Milestone)
        .where(
            Milestone.milestone_id == milestone_id,
            Milestone.is_completed.is_(False),
        )
        .values(
            is_completed=True,
            completed_at=datetime.now(UTC),
            completion_notes=completion_notes,
            rejected_at=None,
            rejection_reason=None,
            updated_at=datetime.now(UTC),
        )
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Milestone is already completed")
    await db.commit()
    await db.refresh(milestone)
    return milestone


async def reject_milestone(
    db: AsyncSession,
    caller: CallerContext,
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
    reason: str | None = None,
) -> Milestone:
    """Client sends a completed, unpaid milestone back to the freelancer."""
    project = await get_project(db, project_id)
    assert_owner(project, caller, "reject milestones")
    bid = await get_accepted_bid(db, project)
    milestone = await _find(db, bid, milestone_id)
    if not milestone.is_completed:
        raise Conflict("Only completed milestones can be rejected")
    if milestone.payment_released or milestone.payment_initiated:
        raise Conflict("Cannot reject a milestone whose payment has been released")

    now = datetime.now(UTC)
    result = await db.execute(
        update(Milestone)
        .where(
            Milestone.milestone_id == milestone_id,
            Milestone.is_completed.is_(True),
            Milestone.payment_initiated.is_(False),
            Milestone.payment_released.is_(False),
        )
        .values(
            is_completed=False,
            completed_at=None,
            rejected_at=now,
            rejection_reason=reason or "Client rejected the milestone completion",
            updated_at=now,
        )
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Milestone payment started before it could be rejected")
    await db.commit()
    await db.refresh(milestone)
    logger.info("Milestone %s rejected on project %s", milestone_id, project_id)
    return milestone


def summarize(
    milestones: list[Milestone], final_project_amount: Decimal | None
) -> list[MilestoneResponse]:
    """Milestones in payout order, each with its index and projected payout."""
    projected: list[Decimal | None] = [None] * len(milestones)
    if milestones and final_project_amount:
        projected = list(allocate(len(milestones), final_project_amount))
    items = []
    for index, milestone in enumerate(milestones):
        item = MilestoneResponse.model_validate(milestone)
        item.index = index
        item.projected_payout = projected[index]
        items.append(item)
    return items


async def list_milestones(
    db: AsyncSession, caller: CallerContext, project_id: uuid.UUID
) -> MilestoneLedger:
    project = await get_project(db, project_id)
    bid = await find_accepted_bid(db, project)
    assert_can_view(project, bid, caller)

    milestones = await ordered_milestones(db, bid.bid_id) if bid is not None else []
    return MilestoneLedger(
        project_id=project.project_id,
        project_title=project.title,
        milestones=summarize(milestones, project.final_project_amount),
        total_milestones=len(milestones),
        completed_count=sum(1 for m in milestones if m.is_completed),
        total_amount=sum((m.amount for m in milestones), Decimal("0")),
        released_amount=sum(
            (m.payment_amount or Decimal("0") for m in milestones if m.payment_released),
            Decimal("0"),
        ),
    )
