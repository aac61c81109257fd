"""Redis async client factory."""

import redis.asyncio as aioredis

from src.config import settings


def create_redis(url: str | None = None) -> aioredis.Redis:
    """Return a Redis client with its own connection pool.

    The app factory creates one client per process and hands it to the
    real-time channel and the payment sweeper; nothing holds it globally.
    """
    return aioredis.Redis.from_url(url or settings.redis_url, decode_responses=True)
