"""
Shared test fixtures.

Uses a throwaway SQLite file (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production metadata is created as-is:
the partial unique index, the CHECK constraints and ``UPDATE ...
RETURNING`` all work on SQLite.

A file rather than ``:memory:`` gives every session its own connection,
which is what the seat-race tests need.  Foreign keys are switched on
for every connection, as PostgreSQL always enforces them.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.domain.entities import Principal
from src.domain.enums import BookingFlow, UserRole
from src.infrastructure.database import Base
from src.infrastructure.models import RideModel, UserModel
from src.infrastructure.realtime import RealtimeChannel
from src.services.bookings import BookingService
from src.services.inventory import RideInventory
from src.services.notifications import NotificationService

DRIVER_ID = 1
PASSENGER_ID = 2
OTHER_PASSENGER_ID = 3


# ── Engine / sessions ─────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables in a fresh database file, yield a session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _enforce_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add_all(
            [
                UserModel(id=DRIVER_ID, name="Wanjiku", email="driver@example.com",
                          phone="254712000001", role=UserRole.DRIVER),
                UserModel(id=PASSENGER_ID, name="Njeri", email="njeri@example.com",
                          phone="0722000001", role=UserRole.PASSENGER),
                UserModel(id=OTHER_PASSENGER_ID, name="Mutua", email="mutua@example.com",
                          role=UserRole.PASSENGER),
            ]
        )
        await session.commit()

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def channel():
    """A connected-looking channel whose publishes are recorded."""
    mock = AsyncMock(spec=RealtimeChannel)
    mock.publish = AsyncMock(return_value=1)
    return mock


@pytest.fixture
def notifications(db_session, channel) -> NotificationService:
    return NotificationService(db_session, channel)


@pytest.fixture
def booking_service(db_session, notifications) -> BookingService:
    return BookingService(db_session, notifications, flow=BookingFlow.REQUEST)


# ── Helpers ───────────────────────────────────────────────────────────


async def make_ride(
    session: AsyncSession,
    total_seats: int = 3,
    price: str = "500.00",
    driver_id: int = DRIVER_ID,
) -> RideModel:
    """Offer a ride through the inventory and commit it."""
    ride = await RideInventory(session).create_ride(
        Principal(driver_id, UserRole.DRIVER),
        origin="Nairobi",
        destination="Nakuru",
        departure_date=date.today() + timedelta(days=1),
        departure_time="07:30",
        price_per_seat=Decimal(price),
        total_seats=total_seats,
    )
    await session.commit()
    return ride


async def seats_of(factory: async_sessionmaker, ride_id: int) -> int:
    """Read ``available_seats`` through a fresh session."""
    async with factory() as session:
        ride = await session.get(RideModel, ride_id)
        return ride.available_seats
