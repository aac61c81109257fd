"""
Redis-based distributed lock.

Used by the payment sweeper so only one process expires stale payments
at a time, even when several API instances run the loop.

Acquire is ``SET NX EX``; release is a Lua script that only
touches the key while it still carries our token.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = f"lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        return bool(await self.redis.set(self.key, self.token, nx=True, ex=self.ttl))

    async def release(self) -> bool:
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    @asynccontextmanager
    async def held(self) -> AsyncIterator[bool]:
        """Yield whether the lock was obtained; release on exit if it was."""
        acquired = await self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                await self.release()
