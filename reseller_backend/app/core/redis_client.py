"""
Redis client initialization and connection management.

This module provides Redis client setup for token revocation flags.
"""

import redis.asyncio as redis
from reseller_backend.app.core.config import settings


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """
    Test Redis connection, used by /health.
    
    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except Exception:
        return False
