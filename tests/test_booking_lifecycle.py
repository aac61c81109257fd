"""
Booking lifecycle tests.

Walks bookings through request -> accept/decline -> cancel, checks the
seat counter after every step, and verifies the notification side
effects (rows written in the transaction, pushes only after commit).
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from src.domain.enums import BookingFlow, BookingStatus, NotificationType, RideStatus
from src.domain.errors import (
    ChannelNotInitialized,
    DuplicateBooking,
    InsufficientCapacity,
    InvalidState,
    NotFound,
    RideNotActive,
    SelfBookingForbidden,
    Unauthorized,
)
from src.infrastructure.models import BookingModel, NotificationModel
from src.services.bookings import BookingService, is_duplicate_booking
from src.services.notifications import NotificationService
from tests.conftest import (
    DRIVER_ID,
    OTHER_PASSENGER_ID,
    PASSENGER_ID,
    make_ride,
    seats_of,
)


async def _count_notifications(session, type_: NotificationType | None = None) -> int:
    query = select(func.count()).select_from(NotificationModel)
    if type_ is not None:
        query = query.where(NotificationModel.type == type_.value)
    return (await session.execute(query)).scalar()


class TestScenarios:
    @pytest.mark.asyncio
    async def test_book_accept_cancel_restores_seats(
        self, booking_service, db_session, session_factory
    ):
        ride = await make_ride(db_session, total_seats=4, price="500")

        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 2)
        assert booking.total_amount == Decimal("1000.00")
        assert booking.status == BookingStatus.PENDING
        assert await seats_of(session_factory, ride.id) == 2

        booking = await booking_service.accept_booking(booking.id, DRIVER_ID)
        assert booking.status == BookingStatus.ACCEPTED
        assert await seats_of(session_factory, ride.id) == 2

        booking = await booking_service.cancel_booking(booking.id, PASSENGER_ID)
        assert booking.status == BookingStatus.CANCELLED
        assert await seats_of(session_factory, ride.id) == 4

    @pytest.mark.asyncio
    async def test_last_seat_goes_to_one_passenger(self, session_factory, channel):
        async with session_factory() as setup:
            ride = await make_ride(setup, total_seats=1)

        async with session_factory() as first, session_factory() as second:
            winner = BookingService(first, NotificationService(first, channel))
            loser = BookingService(second, NotificationService(second, channel))

            await winner.create_booking(ride.id, PASSENGER_ID, 1)
            with pytest.raises(InsufficientCapacity):
                await loser.create_booking(ride.id, OTHER_PASSENGER_ID, 1)

        assert await seats_of(session_factory, ride.id) == 0

    @pytest.mark.asyncio
    async def test_concurrent_requests_for_last_seat(self, session_factory, channel):
        async with session_factory() as setup:
            ride = await make_ride(setup, total_seats=1)

        async with session_factory() as first, session_factory() as second:
            results = await asyncio.gather(
                BookingService(first, NotificationService(first, channel)).create_booking(
                    ride.id, PASSENGER_ID, 1
                ),
                BookingService(second, NotificationService(second, channel)).create_booking(
                    ride.id, OTHER_PASSENGER_ID, 1
                ),
                return_exceptions=True,
            )

        assert sorted(type(r).__name__ for r in results) == [
            "BookingModel",
            "InsufficientCapacity",
        ]
        assert await seats_of(session_factory, ride.id) == 0

    @pytest.mark.asyncio
    async def test_cancel_ride_cascades_to_pending_bookings(
        self, booking_service, db_session, channel
    ):
        ride = await make_ride(db_session, total_seats=4)
        first = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        second = await booking_service.create_booking(ride.id, OTHER_PASSENGER_ID, 1)
        channel.publish.reset_mock()

        ride, cancelled = await booking_service.cancel_ride(ride.id, DRIVER_ID)

        assert RideStatus(ride.status) == RideStatus.CANCELLED
        assert {b.id for b in cancelled} == {first.id, second.id}
        assert all(b.status == BookingStatus.CANCELLED for b in cancelled)
        assert await _count_notifications(db_session, NotificationType.RIDE_CANCELLED) == 2
        topics = sorted(call.args[0] for call in channel.publish.await_args_list)
        assert topics == [f"passenger:{PASSENGER_ID}", f"passenger:{OTHER_PASSENGER_ID}"]

    @pytest.mark.asyncio
    async def test_driver_cannot_book_own_ride(
        self, booking_service, db_session, session_factory, channel
    ):
        ride = await make_ride(db_session, total_seats=3)
        channel.publish.reset_mock()

        with pytest.raises(SelfBookingForbidden):
            await booking_service.create_booking(ride.id, DRIVER_ID, 1)

        assert await seats_of(session_factory, ride.id) == 3
        assert await _count_notifications(db_session) == 0
        channel.publish.assert_not_awaited()


class TestTransitions:
    @pytest.mark.asyncio
    async def test_accept_twice_is_invalid_state(
        self, booking_service, db_session, session_factory
    ):
        ride = await make_ride(db_session, total_seats=3)
        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        await booking_service.accept_booking(booking.id, DRIVER_ID)

        with pytest.raises(InvalidState):
            await booking_service.accept_booking(booking.id, DRIVER_ID)
        assert await seats_of(session_factory, ride.id) == 2

    @pytest.mark.asyncio
    async def test_decline_releases_once(
        self, booking_service, db_session, session_factory
    ):
        ride = await make_ride(db_session, total_seats=3)
        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 2)

        booking = await booking_service.decline_booking(booking.id, DRIVER_ID)
        assert booking.status == BookingStatus.DECLINED
        assert await seats_of(session_factory, ride.id) == 3

        with pytest.raises(InvalidState):
            await booking_service.decline_booking(booking.id, DRIVER_ID)
        assert await seats_of(session_factory, ride.id) == 3

    @pytest.mark.asyncio
    async def test_cancel_pending_round_trip(
        self, booking_service, db_session, session_factory
    ):
        ride = await make_ride(db_session, total_seats=5)
        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 3)
        await booking_service.cancel_booking(booking.id, PASSENGER_ID)
        assert await seats_of(session_factory, ride.id) == 5

    @pytest.mark.asyncio
    async def test_cancelled_booking_is_terminal(self, booking_service, db_session):
        ride = await make_ride(db_session)
        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        await booking_service.cancel_booking(booking.id, PASSENGER_ID)

        with pytest.raises(InvalidState):
            await booking_service.cancel_booking(booking.id, PASSENGER_ID)
        with pytest.raises(InvalidState):
            await booking_service.accept_booking(booking.id, DRIVER_ID)

    @pytest.mark.asyncio
    async def test_only_driver_accepts(self, booking_service, db_session):
        ride = await make_ride(db_session)
        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        with pytest.raises(Unauthorized):
            await booking_service.accept_booking(booking.id, PASSENGER_ID)

    @pytest.mark.asyncio
    async def test_only_passenger_cancels(self, booking_service, db_session):
        ride = await make_ride(db_session)
        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        with pytest.raises(Unauthorized):
            await booking_service.cancel_booking(booking.id, OTHER_PASSENGER_ID)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, booking_service):
        with pytest.raises(NotFound):
            await booking_service.accept_booking(4242, DRIVER_ID)


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_second_active_booking_is_duplicate(
        self, booking_service, db_session, session_factory
    ):
        ride = await make_ride(db_session, total_seats=4)
        await booking_service.create_booking(ride.id, PASSENGER_ID, 1)

        with pytest.raises(DuplicateBooking):
            await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        assert await seats_of(session_factory, ride.id) == 3

    @pytest.mark.asyncio
    async def test_passenger_without_profile_row_can_book(
        self, booking_service, db_session
    ):
        ride = await make_ride(db_session)
        booking = await booking_service.create_booking(ride.id, 999, 1)
        assert booking.passenger_id == 999
        assert booking.status == BookingStatus.PENDING

    def test_only_the_active_booking_index_means_duplicate(self):
        unique = IntegrityError(
            "INSERT",
            {},
            Exception("UNIQUE constraint failed: bookings.ride_id, bookings.passenger_id"),
        )
        postgres = IntegrityError(
            "INSERT",
            {},
            Exception(
                'duplicate key value violates unique constraint "uq_bookings_active_ride_passenger"'
            ),
        )
        foreign_key = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
        check = IntegrityError(
            "INSERT", {}, Exception("CHECK constraint failed: ck_bookings_seats")
        )

        assert is_duplicate_booking(unique)
        assert is_duplicate_booking(postgres)
        assert not is_duplicate_booking(foreign_key)
        assert not is_duplicate_booking(check)

    @pytest.mark.asyncio
    async def test_rebook_after_cancel(self, booking_service, db_session):
        ride = await make_ride(db_session, total_seats=4)
        first = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        await booking_service.cancel_booking(first.id, PASSENGER_ID)

        again = await booking_service.create_booking(ride.id, PASSENGER_ID, 2)
        assert again.id != first.id
        assert again.status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_booking_cancelled_ride(self, booking_service, db_session):
        ride = await make_ride(db_session)
        await booking_service.cancel_ride(ride.id, DRIVER_ID)
        with pytest.raises(RideNotActive):
            await booking_service.create_booking(ride.id, PASSENGER_ID, 1)

    @pytest.mark.asyncio
    async def test_zero_seats_rejected(self, booking_service, db_session):
        ride = await make_ride(db_session)
        with pytest.raises(ValueError):
            await booking_service.create_booking(ride.id, PASSENGER_ID, 0)

    @pytest.mark.asyncio
    async def test_instant_flow_confirms_immediately(
        self, db_session, notifications, session_factory
    ):
        service = BookingService(db_session, notifications, flow=BookingFlow.INSTANT)
        ride = await make_ride(db_session, total_seats=3)

        booking = await service.create_booking(ride.id, PASSENGER_ID, 1)

        assert booking.status == BookingStatus.ACCEPTED
        assert await seats_of(session_factory, ride.id) == 2
        assert (
            await _count_notifications(db_session, NotificationType.BOOKING_CONFIRMED)
            == 2
        )
        with pytest.raises(InvalidState):
            await service.accept_booking(booking.id, DRIVER_ID)


class TestCompleteRide:
    @pytest.mark.asyncio
    async def test_accepted_complete_and_pending_cancel(self, booking_service, db_session):
        ride = await make_ride(db_session, total_seats=4)
        accepted = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        await booking_service.accept_booking(accepted.id, DRIVER_ID)
        pending = await booking_service.create_booking(ride.id, OTHER_PASSENGER_ID, 1)

        ride, completed = await booking_service.complete_ride(ride.id, DRIVER_ID)

        assert RideStatus(ride.status) == RideStatus.COMPLETED
        assert [b.id for b in completed] == [accepted.id]
        left_over = await db_session.get(BookingModel, pending.id, populate_existing=True)
        assert left_over.status == BookingStatus.CANCELLED


class TestNotificationDelivery:
    @pytest.mark.asyncio
    async def test_push_failure_does_not_fail_transition(
        self, booking_service, db_session, channel
    ):
        channel.publish.side_effect = ChannelNotInitialized("not connected")
        ride = await make_ride(db_session)

        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)

        assert booking.status == BookingStatus.PENDING
        assert await _count_notifications(db_session, NotificationType.BOOKING_CREATED) == 1

    @pytest.mark.asyncio
    async def test_push_goes_to_driver_topic_after_commit(
        self, booking_service, db_session, channel
    ):
        ride = await make_ride(db_session)
        await booking_service.create_booking(ride.id, PASSENGER_ID, 1)

        channel.publish.assert_awaited_once()
        topic, payload = channel.publish.await_args.args
        assert topic == f"driver:{DRIVER_ID}"
        assert payload["event"] == NotificationType.BOOKING_CREATED.value
        assert payload["notification"]["ride_id"] == ride.id

    @pytest.mark.asyncio
    async def test_recipient_can_list_and_mark_read(
        self, booking_service, notifications, db_session
    ):
        ride = await make_ride(db_session)
        booking = await booking_service.create_booking(ride.id, PASSENGER_ID, 1)
        await booking_service.accept_booking(booking.id, DRIVER_ID)

        items, unread = await notifications.list_for(PASSENGER_ID)
        assert unread == 1
        assert items[0].type == NotificationType.BOOKING_ACCEPTED.value

        with pytest.raises(NotFound):
            await notifications.mark_read(items[0].id, DRIVER_ID)
        marked = await notifications.mark_read(items[0].id, PASSENGER_ID)
        assert marked.read is True
        assert await notifications.mark_all_read(PASSENGER_ID) == 0
