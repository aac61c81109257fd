"""
Background Payment Sweeper
==========================

Runs every ``PAYMENT_SWEEP_INTERVAL_SECONDS`` (default 30 s).

STK-push outcomes arrive by callback.  If Safaricom never calls back,
the attempt would sit in ``processing`` forever, so each cycle settles
attempts older than ``PAYMENT_TIMEOUT_SECONDS`` as failed.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple API processes.
* Each attempt is closed with a conditional UPDATE on
  ``status = processing``, so a callback racing the sweep wins or loses
  cleanly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import DistributedLock
from src.infrastructure.realtime import RealtimeChannel
from src.services.notifications import NotificationService
from src.services.settlement import PaymentSettlement

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper(redis: aioredis.Redis, channel: RealtimeChannel) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(redis, channel))
    logger.info(
        "Payment sweeper started (interval=%ds, timeout=%ds)",
        settings.payment_sweep_interval_seconds,
        settings.payment_timeout_seconds,
    )


async def stop_sweeper() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Payment sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(redis: aioredis.Redis, channel: RealtimeChannel) -> None:
    """Periodic loop: run a sweep cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(redis, channel)
        except Exception:
            logger.exception("Unhandled error in payment sweep cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.payment_sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_sweep_cycle(
    redis: aioredis.Redis,
    channel: RealtimeChannel,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> int:
    """Execute one sweep.  Returns the number of payments expired."""
    lock = DistributedLock(redis, "payment_sweeper", ttl_seconds=60)

    async with lock.held() as acquired:
        if not acquired:
            logger.debug("Lock held by another worker - skipping sweep")
            return 0

        factory = session_factory or async_session_factory
        async with factory() as session:
            settlement = PaymentSettlement(
                session, NotificationService(session, channel)
            )
            return await settlement.expire_stale_payments()
