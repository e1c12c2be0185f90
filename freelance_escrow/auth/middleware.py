"""Ed25519 signature verification dependency for FastAPI."""

import uuid

import redis.asyncio as aioredis
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.auth.context import CallerContext
from freelance_escrow.config import settings
from freelance_escrow.database import get_db
from freelance_escrow.errors import Forbidden
from freelance_escrow.models.user import User, UserStatus
from freelance_escrow.redis import claim_nonce, get_redis
from freelance_escrow.utils.crypto import (
    AUTH_SCHEME,
    is_timestamp_fresh,
    verify_request_signature,
)


def _parse_authorization(header: str) -> tuple[uuid.UUID, str]:
    scheme, _, credentials = header.partition(" ")
    if scheme != AUTH_SCHEME or not credentials:
        raise Forbidden("Invalid authorization scheme")
    try:
        user_id_str, signature = credentials.split(":", 1)
        return uuid.UUID(user_id_str), signature
    except ValueError:
        raise Forbidden("Malformed authorization header")


async def verify_request(
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> CallerContext:
    """Authenticate a signed request and return who is calling."""
    auth_header = request.headers.get("Authorization")
    timestamp = request.headers.get("X-Timestamp")
    nonce = request.headers.get("X-Nonce")

    if not auth_header or not timestamp or not nonce:
        raise Forbidden("Missing authentication headers")

    user_id, signature = _parse_authorization(auth_header)

    if not is_timestamp_fresh(timestamp, settings.signature_max_age_seconds):
        raise Forbidden("Request timestamp expired")

    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise Forbidden("User not found")
    if user.status != UserStatus.ACTIVE:
        raise Forbidden("User is not active")

    body = await request.body()
    if not verify_request_signature(
        user.public_key, signature, timestamp, nonce, request.method, request.url.path, body
    ):
        raise Forbidden("Invalid signature")

    # Only a correctly signed request may burn a nonce.
    if not await claim_nonce(redis, str(user_id), nonce):
        raise Forbidden("Nonce already used")

    return CallerContext(user_id=user.user_id, role=user.role)
