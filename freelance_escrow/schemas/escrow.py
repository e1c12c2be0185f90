"""Pydantic v2 schemas for Escrow."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from freelance_escrow.schemas.milestone import MilestoneResponse


class CreateEscrow(BaseModel):
    final_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class VerifyEscrow(BaseModel):
    payment_id: str = Field(..., min_length=1, max_length=64)
    signature: str = Field(..., min_length=1, max_length=256)


class EscrowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    project_id: uuid.UUID
    escrow_amount: Decimal | None
    escrow_order_id: str | None
    escrow_payment_id: str | None
    escrow_status: str
    escrow_verified_at: datetime | None
    final_project_amount: Decimal | None

    @field_validator("escrow_status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class EscrowOrder(BaseModel):
    """What the client needs to open the gateway checkout."""
    escrow: EscrowResponse
    order_id: str
    amount: Decimal
    currency: str
    key_id: str


class MilestonePayout(BaseModel):
    milestone: MilestoneResponse
    payout_id: str
    amount: Decimal
    currency: str


class EscrowStatusResponse(BaseModel):
    project_id: uuid.UUID
    project_title: str
    escrow_amount: Decimal
    final_project_amount: Decimal
    escrow_status: str
    escrow_verified_at: datetime | None
    milestones: list[MilestoneResponse]
    total_milestones: int
    completed_milestones: int
    released_payments: int
    released_amount: Decimal
    remaining_amount: Decimal
