"""Unit-of-work base for services that mutate state."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.errors import UpstreamFailure
from src.services.notifications import NotificationService

logger = logging.getLogger(__name__)


class TransactionalService:
    """Runs each operation as one transaction, then publishes its pushes.

    The notification rows are written inside the transaction; the live
    pushes queued on ``self.notifications`` go out only after commit and
    are discarded on rollback.
    """

    def __init__(self, session: AsyncSession, notifications: NotificationService):
        self.session = session
        self.notifications = notifications

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        try:
            yield
            await self.session.commit()
        except DBAPIError as exc:
            await self._abort()
            if isinstance(exc, OperationalError) or exc.connection_invalidated:
                raise UpstreamFailure("Persistent store unavailable") from exc
            raise
        except Exception:
            await self._abort()
            raise
        await self.notifications.publish_pending()

    async def _abort(self) -> None:
        await self.session.rollback()
        self.notifications.discard_pending()
