"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import Principal
from src.domain.enums import UserRole
from src.infrastructure.database import async_session_factory
from src.infrastructure.payment_gateway import PaymentGateway
from src.infrastructure.realtime import RealtimeChannel
from src.services.bookings import BookingService
from src.services.notifications import NotificationService
from src.services.queries import BookingQueries
from src.services.settlement import PaymentSettlement


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_principal(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[UserRole] = Header(None),
) -> Principal:
    """Identity is asserted upstream; we only read the forwarded headers."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return Principal(user_id=x_user_id, role=x_user_role or UserRole.PASSENGER)


def get_channel(request: Request) -> RealtimeChannel:
    return request.app.state.channel


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_notifications(
    db: AsyncSession = Depends(get_db),
    channel: RealtimeChannel = Depends(get_channel),
) -> NotificationService:
    return NotificationService(db, channel)


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notifications),
) -> BookingService:
    return BookingService(db, notifications)


def get_settlement(
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notifications),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentSettlement:
    return PaymentSettlement(db, notifications, gateway)


def get_queries(db: AsyncSession = Depends(get_db)) -> BookingQueries:
    return BookingQueries(db)
