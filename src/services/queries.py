"""Read-only projections over rides, bookings and payments.  Newest first unless noted."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.enums import BookingStatus
from src.domain.errors import NotFound, Unauthorized
from src.domain.pricing import to_money
from src.infrastructure.models import BookingModel, PaymentModel, RideModel
from src.infrastructure.repositories import (
    BookingRepository,
    PaymentRepository,
    RideRepository,
)


class BookingQueries:
    def __init__(self, session: AsyncSession):
        self.rides = RideRepository(session)
        self.bookings = BookingRepository(session)
        self.payments = PaymentRepository(session)

    async def get_ride(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise NotFound("Ride not found")
        return ride

    async def get_booking(self, booking_id: int, viewer_id: int) -> BookingModel:
        """A booking is visible to its passenger and to the ride's driver."""
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        if booking.passenger_id != viewer_id:
            ride = await self.get_ride(booking.ride_id)
            if ride.driver_id != viewer_id:
                raise Unauthorized("Not your booking")
        return booking

    async def search_rides(
        self,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        departure_date: Optional[date] = None,
        seats: int = 1,
    ) -> list[RideModel]:
        """Active rides with at least *seats* free, soonest departure first."""
        return await self.rides.search(
            origin=origin,
            destination=destination,
            departure_date=departure_date,
            min_seats=seats,
        )

    async def rides_for_driver(self, driver_id: int) -> list[RideModel]:
        return await self.rides.list_for_driver(driver_id)

    async def bookings_for_passenger(self, passenger_id: int) -> list[BookingModel]:
        return await self.bookings.list_for_passenger(passenger_id)

    async def bookings_for_driver(self, driver_id: int) -> list[BookingModel]:
        return await self.bookings.list_for_driver(driver_id)

    async def pending_requests_for_driver(self, driver_id: int) -> list[BookingModel]:
        return await self.bookings.list_for_driver(driver_id, status=BookingStatus.PENDING)

    async def bookings_for_ride(self, ride_id: int, actor_id: int) -> list[BookingModel]:
        ride = await self.get_ride(ride_id)
        if ride.driver_id != actor_id:
            raise Unauthorized("Only the ride's driver can list its bookings")
        return await self.bookings.list_for_ride(ride_id)

    async def get_payment(self, payment_id: int, viewer_id: int) -> PaymentModel:
        """A payment is visible to the passenger who paid and the driver paid."""
        payment = await self.payments.get_by_id(payment_id)
        if payment is None:
            raise NotFound("Payment not found")
        if viewer_id not in (payment.payer_id, payment.receiver_id):
            raise Unauthorized("Not your payment")
        return payment

    async def payments_for_payer(self, payer_id: int) -> list[PaymentModel]:
        return await self.payments.list_for_payer(payer_id)

    async def earnings_for_driver(
        self, driver_id: int, now: Optional[datetime] = None
    ) -> dict:
        """Succeeded payouts to *driver_id*, with all-time and this-month totals."""
        now = now or datetime.now(timezone.utc)
        payments = await self.payments.list_succeeded_for_receiver(driver_id)
        this_month = [
            p
            for p in payments
            if p.created_at is not None
            and (p.created_at.year, p.created_at.month) == (now.year, now.month)
        ]
        return {
            "payments": payments,
            "total_earnings": to_money(sum((p.driver_payout for p in payments), Decimal("0"))),
            "this_month_earnings": to_money(
                sum((p.driver_payout for p in this_month), Decimal("0"))
            ),
            "total_transactions": len(payments),
        }
