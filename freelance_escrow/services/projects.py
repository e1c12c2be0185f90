"""Project/bid lookups and the access rules shared by ledger and escrow."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.auth.context import CallerContext
from freelance_escrow.errors import Forbidden, NotFound
from freelance_escrow.models.milestone import Milestone
from freelance_escrow.models.project import Bid, BidStatus, Project


async def get_project(db: AsyncSession, project_id: uuid.UUID) -> Project:
    result = await db.execute(select(Project).where(Project.project_id == project_id))
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFound("Project not found")
    return project


async def find_accepted_bid(db: AsyncSession, project: Project) -> Bid | None:
    if project.accepted_bid_id is None:
        return None
    result = await db.execute(
        select(Bid).where(
            Bid.bid_id == project.accepted_bid_id,
            Bid.project_id == project.project_id,
        )
    )
    return result.scalar_one_or_none()


async def get_accepted_bid(db: AsyncSession, project: Project) -> Bid:
    bid = await find_accepted_bid(db, project)
    if bid is None or bid.status != BidStatus.ACCEPTED:
        raise NotFound("No accepted bid found for this project")
    return bid


def assert_owner(project: Project, caller: CallerContext, action: str) -> None:
    if project.owner_id != caller.user_id:
        raise Forbidden(f"Only the project owner can {action}")


def assert_assigned_freelancer(bid: Bid, caller: CallerContext, action: str) -> None:
    if bid.freelancer_id != caller.user_id:
        raise Forbidden(f"Only the assigned freelancer can {action}")


def assert_can_view(project: Project, bid: Bid | None, caller: CallerContext) -> None:
    """Owner, assigned freelancer, or admin."""
    if caller.is_admin or project.owner_id == caller.user_id:
        return
    if bid is not None and bid.freelancer_id == caller.user_id:
        return
    raise Forbidden("Access denied")


async def ordered_milestones(db: AsyncSession, bid_id: uuid.UUID) -> list[Milestone]:
    result = await db.execute(
        select(Milestone).where(Milestone.bid_id == bid_id).order_by(Milestone.position)
    )
    return list(result.scalars().all())


def locate_milestone(
    milestones: list[Milestone], milestone_id: uuid.UUID
) -> tuple[int, Milestone]:
    """Return (index, milestone); the index is the milestone's current rank."""
    for index, milestone in enumerate(milestones):
        if milestone.milestone_id == milestone_id:
            return index, milestone
    raise NotFound("Milestone not found for this project")
