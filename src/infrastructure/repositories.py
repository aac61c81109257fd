"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Every mutation that must not race is a single conditional
``UPDATE ... WHERE <expected state> RETURNING``: the check and the write
happen in one statement, so two requests can never both observe the
same precondition and both apply.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BookingModel,
    NotificationModel,
    PaymentModel,
    RideModel,
    UserModel,
)
from src.domain.enums import (
    INACTIVE_BOOKING_STATUSES,
    SEAT_HOLDING_STATUSES,
    BookingStatus,
    PaymentAttemptStatus,
    RideStatus,
)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id, populate_existing=True)

    async def decrement_seats(self, ride_id: int, count: int) -> Optional[RideModel]:
        """Take *count* seats if the ride is active and has them.  O(1).

        Returns the updated ride, or ``None`` when the condition failed.
        """
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.status == RideStatus.ACTIVE,
                RideModel.available_seats >= count,
            )
            .values(available_seats=RideModel.available_seats - count)
            .returning(RideModel)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def increment_seats(self, ride_id: int, count: int) -> Optional[RideModel]:
        """Give back *count* seats, clamped at ``total_seats``."""
        restored = RideModel.available_seats + count
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(
                available_seats=case(
                    (restored > RideModel.total_seats, RideModel.total_seats),
                    else_=restored,
                )
            )
            .returning(RideModel)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition_status(
        self, ride_id: int, expected: RideStatus, new_status: RideStatus
    ) -> Optional[RideModel]:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == expected)
            .values(status=new_status)
            .returning(RideModel)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_details(self, ride_id: int, values: dict) -> Optional[RideModel]:
        """Edit an active ride.

        A new ``total_seats`` also resets ``available_seats`` and applies only
        while no seat is held.
        """
        query = update(RideModel).where(
            RideModel.id == ride_id, RideModel.status == RideStatus.ACTIVE
        )
        if "total_seats" in values:
            query = query.where(RideModel.available_seats == RideModel.total_seats)
            values = {**values, "available_seats": values["total_seats"]}
        result = await self.session.execute(
            query.values(**values)
            .returning(RideModel)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def delete(self, ride_id: int) -> None:
        await self.session.execute(delete(RideModel).where(RideModel.id == ride_id))

    async def list_for_driver(self, driver_id: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.driver_id == driver_id)
            .order_by(RideModel.departure_date.desc(), RideModel.id.desc())
        )
        return list(result.scalars().all())

    async def search(
        self,
        *,
        origin: str | None = None,
        destination: str | None = None,
        departure_date: date | None = None,
        min_seats: int = 1,
        limit: int = 50,
    ) -> list[RideModel]:
        query = select(RideModel).where(
            RideModel.status == RideStatus.ACTIVE,
            RideModel.available_seats >= min_seats,
        )
        if origin:
            query = query.where(RideModel.origin.ilike(f"%{origin}%"))
        if destination:
            query = query.where(RideModel.destination.ilike(f"%{destination}%"))
        if departure_date:
            query = query.where(RideModel.departure_date == departure_date)
        result = await self.session.execute(
            query.order_by(
                RideModel.departure_date, RideModel.departure_time, RideModel.id
            ).limit(limit)
        )
        return list(result.scalars().all())


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: int) -> Optional[BookingModel]:
        return await self.session.get(
            BookingModel, booking_id, populate_existing=True
        )

    async def get_active_for(
        self, ride_id: int, passenger_id: int
    ) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel).where(
                BookingModel.ride_id == ride_id,
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.not_in(list(INACTIVE_BOOKING_STATUSES)),
            )
        )
        return result.scalars().first()

    async def transition(
        self,
        booking_id: int,
        expected: Iterable[BookingStatus],
        new_status: BookingStatus,
    ) -> Optional[BookingModel]:
        """Move to *new_status* only if the current status is in *expected*."""
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status.in_(list(expected)),
            )
            .values(status=new_status)
            .returning(BookingModel)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_payment_outcome(self, booking_id: int, **values) -> Optional[BookingModel]:
        """Record a payment outcome; only accepted bookings can be settled."""
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status == BookingStatus.ACCEPTED,
            )
            .values(**values)
            .returning(BookingModel)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def seat_holding_for_ride(self, ride_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.in_(list(SEAT_HOLDING_STATUSES)),
            )
            .order_by(BookingModel.id)
        )
        return list(result.scalars().all())

    async def count_for_ride(self, ride_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(BookingModel.ride_id == ride_id)
        )
        return result.scalar() or 0

    async def seats_held_for_ride(self, ride_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(BookingModel.seats_booked), 0)).where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.in_(list(SEAT_HOLDING_STATUSES)),
            )
        )
        return int(result.scalar() or 0)

    async def list_for_passenger(self, passenger_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.passenger_id == passenger_id)
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_driver(
        self, driver_id: int, status: BookingStatus | None = None
    ) -> list[BookingModel]:
        query = (
            select(BookingModel)
            .join(RideModel, RideModel.id == BookingModel.ride_id)
            .where(RideModel.driver_id == driver_id)
        )
        if status is not None:
            query = query.where(BookingModel.status == status)
        result = await self.session.execute(
            query.order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_ride(self, ride_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.ride_id == ride_id)
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return list(result.scalars().all())


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, notification: NotificationModel) -> NotificationModel:
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def list_for_user(
        self, user_id: int, limit: int = 100
    ) -> list[NotificationModel]:
        result = await self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_unread(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(NotificationModel)
            .where(
                NotificationModel.user_id == user_id,
                NotificationModel.read.is_(False),
            )
        )
        return result.scalar() or 0

    async def mark_read(
        self, notification_id: int, user_id: int
    ) -> Optional[NotificationModel]:
        result = await self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_id,
                NotificationModel.user_id == user_id,
            )
            .values(read=True)
            .returning(NotificationModel)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_all_read(self, user_id: int) -> int:
        result = await self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.user_id == user_id,
                NotificationModel.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, payment: PaymentModel) -> PaymentModel:
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def get_by_id(self, payment_id: int) -> Optional[PaymentModel]:
        return await self.session.get(PaymentModel, payment_id, populate_existing=True)

    async def get_by_checkout_request_id(self, checkout_id: str) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.checkout_request_id == checkout_id)
        )
        return result.scalar_one_or_none()

    async def get_processing_for_booking(self, booking_id: int) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(
                PaymentModel.booking_id == booking_id,
                PaymentModel.status == PaymentAttemptStatus.PROCESSING,
            )
        )
        return result.scalars().first()

    async def finish(self, payment_id: int, **values) -> Optional[PaymentModel]:
        """Close a ``processing`` attempt; ``None`` if it was already closed."""
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status == PaymentAttemptStatus.PROCESSING,
            )
            .values(**values)
            .returning(PaymentModel)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_payer(self, payer_id: int) -> list[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.payer_id == payer_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_succeeded_for_receiver(self, receiver_id: int) -> list[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.receiver_id == receiver_id,
                PaymentModel.status == PaymentAttemptStatus.SUCCEEDED,
            )
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        )
        return list(result.scalars().all())

    async def stale_processing(self, older_than: datetime) -> list[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.status == PaymentAttemptStatus.PROCESSING,
                PaymentModel.created_at < older_than,
            )
            .order_by(PaymentModel.created_at)
        )
        return list(result.scalars().all())


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)
