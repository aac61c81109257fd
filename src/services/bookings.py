"""
Booking Lifecycle
=================

State machine
-------------
    pending  -> accepted | declined | cancelled
    accepted -> completed | cancelled
    declined, completed, cancelled are terminal

Seats are reserved eagerly when the booking is created, so acceptance
never touches the counter.  Declining or cancelling a seat-holding
booking releases its seats; cancelling or completing the whole ride
does not, because the ride's counter stops mattering once it is
terminal.

Every transition is a conditional UPDATE keyed on the expected prior
status, and each public operation is one transaction: the booking
change, the seat change and the notification rows commit together or
not at all.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.entities import ensure_transition
from src.domain.enums import (
    SEAT_HOLDING_STATUSES,
    BookingFlow,
    BookingStatus,
    sources_for,
)
from src.domain.errors import (
    DuplicateBooking,
    InvalidState,
    NotFound,
    SelfBookingForbidden,
    Unauthorized,
)
from src.domain.pricing import booking_total
from src.infrastructure.models import ACTIVE_BOOKING_INDEX, BookingModel, RideModel
from src.infrastructure.repositories import BookingRepository
from src.services.base import TransactionalService
from src.services.inventory import RideInventory
from src.services.notifications import NotificationService

logger = logging.getLogger(__name__)


def is_duplicate_booking(exc: IntegrityError) -> bool:
    """True when *exc* came from the one-active-booking-per-passenger index.

    PostgreSQL names the index in its message; SQLite names the columns.
    """
    message = str(exc.orig)
    return (
        ACTIVE_BOOKING_INDEX in message
        or "bookings.ride_id, bookings.passenger_id" in message
    )


class BookingService(TransactionalService):
    def __init__(
        self,
        session: AsyncSession,
        notifications: NotificationService,
        flow: BookingFlow | None = None,
    ):
        super().__init__(session, notifications)
        self.bookings = BookingRepository(session)
        self.inventory = RideInventory(session)
        self.flow = BookingFlow(flow or settings.booking_flow)

    # ── Helpers ───────────────────────────────────────────────────

    async def _load(self, booking_id: int) -> tuple[BookingModel, RideModel]:
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        ride = await self.inventory.get(booking.ride_id)
        return booking, ride

    async def _transition(
        self,
        booking: BookingModel,
        new_status: BookingStatus,
    ) -> BookingModel:
        ensure_transition(booking.status, new_status)
        updated = await self.bookings.transition(
            booking.id, sources_for(new_status), new_status
        )
        if updated is None:
            # Another request moved the booking first; report what it is now.
            current = await self.bookings.get_by_id(booking.id)
            ensure_transition(current.status, new_status)
            raise InvalidState("Booking changed concurrently; retry")
        return updated

    # ── Operations ────────────────────────────────────────────────

    async def create_booking(
        self,
        ride_id: int,
        passenger_id: int,
        seat_count: int,
        message: Optional[str] = None,
    ) -> BookingModel:
        if seat_count < 1:
            raise ValueError("seat count must be at least 1")

        async with self.transaction():
            ride = await self.inventory.get(ride_id)
            if ride.driver_id == passenger_id:
                raise SelfBookingForbidden("You cannot book your own ride")
            if await self.bookings.get_active_for(ride_id, passenger_id):
                raise DuplicateBooking("You already have a booking for this ride")

            ride = await self.inventory.reserve_seats(ride_id, seat_count)

            instant = self.flow == BookingFlow.INSTANT
            try:
                booking = await self.bookings.create(
                    BookingModel(
                        ride_id=ride_id,
                        passenger_id=passenger_id,
                        seats_booked=seat_count,
                        status=BookingStatus.ACCEPTED if instant else BookingStatus.PENDING,
                        total_amount=booking_total(seat_count, ride.price_per_seat),
                        message=message or None,
                    )
                )
            except IntegrityError as exc:
                if not is_duplicate_booking(exc):
                    raise
                raise DuplicateBooking(
                    "You already have a booking for this ride"
                ) from exc

            if instant:
                await self.notifications.booking_confirmed(ride, booking)
            else:
                await self.notifications.booking_created(ride, booking)

        logger.info(
            "Booking %s created on ride %s (%d seats, %s)",
            booking.id,
            ride_id,
            seat_count,
            BookingStatus(booking.status).value,
        )
        return booking

    async def accept_booking(self, booking_id: int, actor_id: int) -> BookingModel:
        async with self.transaction():
            booking, ride = await self._load(booking_id)
            if ride.driver_id != actor_id:
                raise Unauthorized("Only the ride's driver can accept bookings")
            booking = await self._transition(booking, BookingStatus.ACCEPTED)
            await self.notifications.booking_accepted(ride, booking)

        logger.info("Booking %s accepted", booking_id)
        return booking

    async def decline_booking(self, booking_id: int, actor_id: int) -> BookingModel:
        async with self.transaction():
            booking, ride = await self._load(booking_id)
            if ride.driver_id != actor_id:
                raise Unauthorized("Only the ride's driver can decline bookings")
            booking = await self._transition(booking, BookingStatus.DECLINED)
            await self.inventory.release_seats(ride.id, booking.seats_booked)
            await self.notifications.booking_declined(ride, booking)

        logger.info("Booking %s declined", booking_id)
        return booking

    async def cancel_booking(self, booking_id: int, actor_id: int) -> BookingModel:
        async with self.transaction():
            booking, ride = await self._load(booking_id)
            if booking.passenger_id != actor_id:
                raise Unauthorized("Only the passenger can cancel this booking")
            prior = BookingStatus(booking.status)
            booking = await self._transition(booking, BookingStatus.CANCELLED)
            if prior in SEAT_HOLDING_STATUSES:
                await self.inventory.release_seats(ride.id, booking.seats_booked)
            await self.notifications.booking_cancelled(ride, booking)

        logger.info("Booking %s cancelled by passenger (was %s)", booking_id, prior.value)
        return booking

    async def cascade_cancel_for_ride(
        self, ride: RideModel, bookings: list[BookingModel]
    ) -> list[BookingModel]:
        """Force-cancel *bookings* after their ride was cancelled.

        Runs inside the caller's transaction.  Seats are not released;
        the ride is terminal.
        """
        cancelled = []
        for booking in bookings:
            updated = await self.bookings.transition(
                booking.id, SEAT_HOLDING_STATUSES, BookingStatus.CANCELLED
            )
            if updated is None:
                continue  # passenger got there first
            await self.notifications.ride_cancelled(ride, updated)
            cancelled.append(updated)
        return cancelled

    async def cancel_ride(self, ride_id: int, actor_id: int) -> tuple[RideModel, list[BookingModel]]:
        async with self.transaction():
            ride, holding = await self.inventory.cancel_ride(ride_id, actor_id)
            cancelled = await self.cascade_cancel_for_ride(ride, holding)

        logger.info("Ride %s cancelled; %d bookings cascaded", ride_id, len(cancelled))
        return ride, cancelled

    async def complete_ride(self, ride_id: int, actor_id: int) -> tuple[RideModel, list[BookingModel]]:
        """Close the ride: accepted bookings complete, pending ones are cancelled."""
        async with self.transaction():
            ride, holding = await self.inventory.complete_ride(ride_id, actor_id)
            completed = []
            for booking in holding:
                target = (
                    BookingStatus.COMPLETED
                    if BookingStatus(booking.status) == BookingStatus.ACCEPTED
                    else BookingStatus.CANCELLED
                )
                updated = await self.bookings.transition(
                    booking.id, {booking.status}, target
                )
                if updated is None:
                    continue
                if target == BookingStatus.COMPLETED:
                    await self.notifications.ride_completed(ride, updated)
                    completed.append(updated)
                else:
                    await self.notifications.ride_cancelled(ride, updated)

        logger.info("Ride %s completed; %d bookings completed", ride_id, len(completed))
        return ride, completed

    async def delete_ride(self, ride_id: int, actor_id: int) -> None:
        async with self.transaction():
            await self.inventory.delete_ride(ride_id, actor_id)
