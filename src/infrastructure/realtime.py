"""
Real-time fan-out channel over Redis pub/sub.

Topics are role+user scoped (``driver:12``, ``passenger:7``).  A socket
gateway (out of scope here) subscribes to them and forwards events to
connected clients.

The channel is constructed explicitly by the app factory and handed to
the notification service.  Until :meth:`RealtimeChannel.connect` runs,
``publish`` raises ``ChannelNotInitialized`` instead of failing on an
implicit global handle.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.domain.errors import ChannelNotInitialized, UpstreamFailure

logger = logging.getLogger(__name__)


def topic_for(role: str, user_id: int) -> str:
    return f"{role}:{user_id}"


class RealtimeChannel:
    def __init__(self, client_factory: Callable[[], aioredis.Redis]):
        self._client_factory = client_factory
        self._client: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = self._client_factory()
            logger.info("Real-time channel connected")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Real-time channel closed")

    async def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Publish *payload* as JSON.  Returns the number of subscribers reached."""
        if self._client is None:
            raise ChannelNotInitialized("Real-time channel is not connected")
        try:
            return await self._client.publish(topic, json.dumps(payload, default=str))
        except RedisError as exc:
            raise UpstreamFailure(f"Publish to {topic} failed: {exc}") from exc
