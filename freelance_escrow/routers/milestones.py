"""Milestone ledger endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.auth.context import CallerContext
from freelance_escrow.auth.middleware import verify_request
from freelance_escrow.database import get_db
from freelance_escrow.schemas.common import ApiResponse
from freelance_escrow.schemas.milestone import (
    CompleteMilestone,
    MilestoneCreate,
    MilestoneLedger,
    MilestoneResponse,
    MilestoneUpdate,
    RejectMilestone,
)
from freelance_escrow.services import milestones as milestone_service

router = APIRouter(prefix="/projects/{project_id}/milestones", tags=["milestones"])


@router.get("", response_model=ApiResponse[MilestoneLedger])
async def list_milestones(
    project_id: uuid.UUID,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[MilestoneLedger]:
    """Milestones in payout order with each one's projected payout."""
    ledger = await milestone_service.list_milestones(db, caller, project_id)
    return ApiResponse(message="Milestones retrieved", data=ledger)


@router.post("", response_model=ApiResponse[MilestoneResponse], status_code=201)
async def add_milestone(
    project_id: uuid.UUID,
    data: MilestoneCreate,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[MilestoneResponse]:
    milestone = await milestone_service.add_milestone(
        db, caller, project_id,
        title=data.title,
        amount=data.amount,
        description=data.description,
        due_date=data.due_date,
    )
    return ApiResponse(
        message="Milestone added", data=MilestoneResponse.model_validate(milestone)
    )


@router.patch("/{milestone_id}", response_model=ApiResponse[MilestoneResponse])
async def modify_milestone(
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
    data: MilestoneUpdate,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[MilestoneResponse]:
    milestone = await milestone_service.modify_milestone(
        db, caller, project_id, milestone_id, **data.model_dump(exclude_unset=True)
    )
    return ApiResponse(
        message="Milestone updated", data=MilestoneResponse.model_validate(milestone)
    )


@router.delete("/{milestone_id}", response_model=ApiResponse[None])
async def remove_milestone(
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[None]:
    await milestone_service.remove_milestone(db, caller, project_id, milestone_id)
    return ApiResponse(message="Milestone removed")


@router.post("/{milestone_id}/complete", response_model=ApiResponse[MilestoneResponse])
async def complete_milestone(
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
    data: CompleteMilestone | None = None,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[MilestoneResponse]:
    """Freelancer marks the milestone delivered."""
    milestone = await milestone_service.complete_milestone(
        db, caller, project_id, milestone_id,
        completion_notes=data.completion_notes if data else None,
    )
    return ApiResponse(
        message="Milestone marked as completed",
        data=MilestoneResponse.model_validate(milestone),
    )


@router.post("/{milestone_id}/reject", response_model=ApiResponse[MilestoneResponse])
async def reject_milestone(
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
    data: RejectMilestone | None = None,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[MilestoneResponse]:
    """Client sends a completed milestone back for rework."""
    milestone = await milestone_service.reject_milestone(
        db, caller, project_id, milestone_id,
        reason=data.reason if data else None,
    )
    return ApiResponse(
        message="Milestone completion rejected",
        data=MilestoneResponse.model_validate(milestone),
    )
