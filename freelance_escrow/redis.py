from collections.abc import AsyncGenerator

import redis.asyncio as aioredis

from freelance_escrow.config import settings

# Only used for request nonces; escrow state never lives in redis.
redis_pool = aioredis.ConnectionPool.from_url(settings.redis_url, decode_responses=True)


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.Redis(connection_pool=redis_pool)
    try:
        yield client
    finally:
        await client.aclose()


async def claim_nonce(redis: aioredis.Redis, user_id: str, nonce: str) -> bool:
    """Record a nonce for its TTL. False if this user already used it."""
    return bool(
        await redis.set(f"nonce:{user_id}:{nonce}", "1", nx=True, ex=settings.nonce_ttl_seconds)
    )
