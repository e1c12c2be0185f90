"""Pydantic v2 schemas for the milestone ledger."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class MilestoneCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    description: str | None = Field(None, max_length=4096)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    due_date: datetime | None = None


class MilestoneUpdate(BaseModel):
    """Only the fields present in the request are changed.

    An explicit null clears ``description`` or ``due_date``.
    """
    title: str | None = Field(None, min_length=1, max_length=256)
    description: str | None = Field(None, max_length=4096)
    amount: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    due_date: datetime | None = None


class CompleteMilestone(BaseModel):
    completion_notes: str | None = Field(None, max_length=4096)


class RejectMilestone(BaseModel):
    reason: str | None = Field(None, max_length=2048)


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    milestone_id: uuid.UUID
    index: int | None = None
    title: str
    description: str | None
    amount: Decimal
    due_date: datetime | None
    is_completed: bool
    completed_at: datetime | None
    completion_notes: str | None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    payment_initiated: bool
    payment_released: bool
    payment_amount: Decimal | None
    payment_id: str | None
    payment_released_at: datetime | None
    # Allocator amount for the current index; None until escrow sets the final amount.
    projected_payout: Decimal | None = None


class MilestoneLedger(BaseModel):
    project_id: uuid.UUID
    project_title: str
    milestones: list[MilestoneResponse]
    total_milestones: int
    completed_count: int
    total_amount: Decimal
    released_amount: Decimal
