# backend/app/redis_client.py

import redis
import redis.asyncio as aioredis

from .config import settings

# Sync client: publishing changes, health checks
redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)


def create_async_redis() -> aioredis.Redis:
    """Async client for change feed subscriptions (one per app lifespan)."""
    return aioredis.from_url(settings.redis_url, decode_responses=True)
