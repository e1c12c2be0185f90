"""Payout destination lookup: where a freelancer gets paid."""

import uuid
from dataclasses import dataclass
from typing import Protocol

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.database import get_db
from freelance_escrow.models.payment import PayoutAccount


@dataclass(frozen=True)
class PayoutDestination:
    recipient_id: uuid.UUID
    holder_name: str
    account_number: str | None
    ifsc_code: str | None
    bank_name: str | None = None
    upi_id: str | None = None

    @property
    def masked_account(self) -> str:
        if self.account_number:
            return "***" + self.account_number[-4:]
        return self.upi_id or "unknown"


class DestinationLookup(Protocol):
    async def get_primary_verified_destination(
        self, recipient_id: uuid.UUID
    ) -> PayoutDestination | None: ...


class DatabaseDestinationLookup:
    """Reads the recipient's active, verified, primary payout account."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_primary_verified_destination(
        self, recipient_id: uuid.UUID
    ) -> PayoutDestination | None:
        result = await self.db.execute(
            select(PayoutAccount).where(
                PayoutAccount.user_id == recipient_id,
                PayoutAccount.is_active.is_(True),
                PayoutAccount.is_verified.is_(True),
                PayoutAccount.is_primary.is_(True),
            ).limit(1)
        )
        account = result.scalar_one_or_none()
        if account is None:
            return None
        return PayoutDestination(
            recipient_id=recipient_id,
            holder_name=account.account_holder_name,
            account_number=account.account_number,
            ifsc_code=account.ifsc_code,
            bank_name=account.bank_name,
            upi_id=account.upi_id,
        )


async def get_destination_lookup(db: AsyncSession = Depends(get_db)) -> DestinationLookup:
    return DatabaseDestinationLookup(db)
