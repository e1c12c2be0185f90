"""Authenticated caller identity, built once per request by the auth layer."""

import uuid
from dataclasses import dataclass

from freelance_escrow.models.user import UserRole


@dataclass(frozen=True)
class CallerContext:
    user_id: uuid.UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
