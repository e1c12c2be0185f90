"""Append-only payment history sink."""

import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.models.payment import PaymentHistory, PaymentStatus


def record_payment(
    db: AsyncSession,
    user_id: uuid.UUID,
    order_id: str,
    payment_id: str | None,
    amount: Decimal,
    currency: str,
    status: PaymentStatus,
    project_id: uuid.UUID | None = None,
    milestone_id: uuid.UUID | None = None,
) -> PaymentHistory:
    """Stage a history row in the caller's transaction. The caller commits."""
    entry = PaymentHistory(
        payment_history_id=uuid.uuid4(),
        user_id=user_id,
        project_id=project_id,
        milestone_id=milestone_id,
        order_id=order_id,
        payment_id=payment_id,
        amount=amount,
        currency=currency,
        status=status,
    )
    db.add(entry)
    return entry
