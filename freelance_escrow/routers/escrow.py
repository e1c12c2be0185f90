"""Escrow endpoints: create, verify, reset, status, and milestone payout release."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.auth.context import CallerContext
from freelance_escrow.auth.middleware import verify_request
from freelance_escrow.config import settings
from freelance_escrow.database import get_db
from freelance_escrow.schemas.common import ApiResponse
from freelance_escrow.schemas.escrow import (
    CreateEscrow,
    EscrowOrder,
    EscrowResponse,
    EscrowStatusResponse,
    MilestonePayout,
    VerifyEscrow,
)
from freelance_escrow.schemas.milestone import MilestoneResponse
from freelance_escrow.services import escrow as escrow_service
from freelance_escrow.services.gateway import PaymentGateway, get_payment_gateway
from freelance_escrow.services.payout_destinations import DestinationLookup, get_destination_lookup

router = APIRouter(prefix="/projects/{project_id}", tags=["escrow"])


@router.post("/escrow", response_model=ApiResponse[EscrowOrder], status_code=201)
async def create_escrow(
    project_id: uuid.UUID,
    data: CreateEscrow,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    destinations: DestinationLookup = Depends(get_destination_lookup),
) -> ApiResponse[EscrowOrder]:
    """Client opens the escrow hold. Returns what the checkout widget needs."""
    project, order_id = await escrow_service.create_escrow_payment(
        db, gateway, destinations, caller, project_id, data.final_amount
    )
    return ApiResponse(
        message="Escrow payment created",
        data=EscrowOrder(
            escrow=EscrowResponse.model_validate(project),
            order_id=order_id,
            amount=project.escrow_amount,
            currency=settings.escrow_currency,
            key_id=gateway.key_id,
        ),
    )


@router.post("/escrow/verify", response_model=ApiResponse[EscrowResponse])
async def verify_escrow(
    project_id: uuid.UUID,
    data: VerifyEscrow,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> ApiResponse[EscrowResponse]:
    project = await escrow_service.verify_escrow_payment(
        db, gateway, caller, project_id, data.payment_id, data.signature
    )
    return ApiResponse(
        message="Escrow payment verified successfully",
        data=EscrowResponse.model_validate(project),
    )


@router.post("/escrow/reset", response_model=ApiResponse[EscrowResponse])
async def reset_escrow(
    project_id: uuid.UUID,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[EscrowResponse]:
    """Abandon a pending hold so the client can start checkout again."""
    project = await escrow_service.reset_escrow_status(db, caller, project_id)
    return ApiResponse(
        message="Escrow status reset successfully",
        data=EscrowResponse.model_validate(project),
    )


@router.get("/escrow", response_model=ApiResponse[EscrowStatusResponse])
async def escrow_status(
    project_id: uuid.UUID,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[EscrowStatusResponse]:
    status = await escrow_service.get_escrow_status(db, caller, project_id)
    return ApiResponse(message="Escrow status retrieved", data=status)


@router.post(
    "/milestones/{milestone_id}/release", response_model=ApiResponse[MilestonePayout]
)
async def release_milestone(
    project_id: uuid.UUID,
    milestone_id: uuid.UUID,
    caller: CallerContext = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    destinations: DestinationLookup = Depends(get_destination_lookup),
) -> ApiResponse[MilestonePayout]:
    """Client pays out one completed milestone from the escrow."""
    milestone, payout_id = await escrow_service.release_milestone_payment(
        db, gateway, destinations, caller, project_id, milestone_id
    )
    return ApiResponse(
        message="Milestone payment released",
        data=MilestonePayout(
            milestone=MilestoneResponse.model_validate(milestone),
            payout_id=payout_id,
            amount=milestone.payment_amount,
            currency=settings.escrow_currency,
        ),
    )
