"""
Notification fan-out.

``notify`` persists a Notification row in the caller's transaction and
queues a live push to the ``<role>:<user_id>`` topic.  Pushes are sent by
``publish_pending`` once the transaction has committed.  A failed push is
logged and dropped: the row is already durable and the recipient can
re-fetch it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.enums import NotificationType, UserRole
from src.domain.errors import NotFound
from src.infrastructure.models import BookingModel, NotificationModel, RideModel
from src.infrastructure.realtime import RealtimeChannel, topic_for
from src.infrastructure.repositories import NotificationRepository

logger = logging.getLogger(__name__)


@dataclass
class _PendingPush:
    topic: str
    notification: NotificationModel


def notification_payload(notification: NotificationModel) -> dict[str, Any]:
    return {
        "event": notification.type,
        "notification": {
            "id": notification.id,
            "user_id": notification.user_id,
            "type": notification.type,
            "title": notification.title,
            "message": notification.message,
            "ride_id": notification.ride_id,
            "booking_id": notification.booking_id,
            "read": notification.read,
            "created_at": notification.created_at,
        },
    }


def _route(ride: RideModel) -> str:
    return f"{ride.origin} to {ride.destination}"


class NotificationService:
    def __init__(self, session: AsyncSession, channel: RealtimeChannel):
        self.repo = NotificationRepository(session)
        self.channel = channel
        self._pending: list[_PendingPush] = []

    # ── Core contract ─────────────────────────────────────────────

    async def notify(
        self,
        recipient_id: int,
        role: UserRole,
        type: NotificationType,
        title: str,
        message: str,
        *,
        ride_id: Optional[int] = None,
        booking_id: Optional[int] = None,
    ) -> NotificationModel:
        notification = await self.repo.create(
            NotificationModel(
                user_id=recipient_id,
                type=type.value,
                title=title,
                message=message,
                ride_id=ride_id,
                booking_id=booking_id,
                read=False,
            )
        )
        self._pending.append(
            _PendingPush(topic_for(role.value, recipient_id), notification)
        )
        return notification

    async def publish_pending(self) -> None:
        """Push every queued notification; never raises."""
        pending, self._pending = self._pending, []
        for push in pending:
            try:
                await self.channel.publish(push.topic, notification_payload(push.notification))
            except Exception:
                logger.exception(
                    "Real-time push to %s failed (notification %s kept)",
                    push.topic,
                    push.notification.id,
                )

    def discard_pending(self) -> None:
        self._pending.clear()

    # ── Lifecycle events ──────────────────────────────────────────

    async def booking_created(self, ride: RideModel, booking: BookingModel):
        return await self.notify(
            ride.driver_id,
            UserRole.DRIVER,
            NotificationType.BOOKING_CREATED,
            "New Booking Request",
            f"A passenger wants to book {booking.seats_booked} seat(s) "
            f"for your ride from {_route(ride)}.",
            ride_id=ride.id,
            booking_id=booking.id,
        )

    async def booking_confirmed(self, ride: RideModel, booking: BookingModel):
        await self.notify(
            ride.driver_id,
            UserRole.DRIVER,
            NotificationType.BOOKING_CONFIRMED,
            "New Booking",
            f"{booking.seats_booked} seat(s) were booked on your ride from {_route(ride)}.",
            ride_id=ride.id,
            booking_id=booking.id,
        )
        return await self.notify(
            booking.passenger_id,
            UserRole.PASSENGER,
            NotificationType.BOOKING_CONFIRMED,
            "Booking Confirmed",
            f"Your booking for the ride from {_route(ride)} is confirmed.",
            ride_id=ride.id,
            booking_id=booking.id,
        )

    async def booking_accepted(self, ride: RideModel, booking: BookingModel):
        return await self.notify(
            booking.passenger_id,
            UserRole.PASSENGER,
            NotificationType.BOOKING_ACCEPTED,
            "Booking Accepted",
            f"Your booking for the ride from {_route(ride)} has been accepted!",
            ride_id=ride.id,
            booking_id=booking.id,
        )

    async def booking_declined(self, ride: RideModel, booking: BookingModel):
        return await self.notify(
            booking.passenger_id,
            UserRole.PASSENGER,
            NotificationType.BOOKING_DECLINED,
            "Booking Declined",
            f"Your booking for the ride from {_route(ride)} has been declined.",
            ride_id=ride.id,
            booking_id=booking.id,
        )

    async def booking_cancelled(self, ride: RideModel, booking: BookingModel):
        return await self.notify(
            ride.driver_id,
            UserRole.DRIVER,
            NotificationType.BOOKING_CANCELLED,
            "Booking Cancelled",
            f"A passenger cancelled {booking.seats_booked} seat(s) "
            f"on your ride from {_route(ride)}.",
            ride_id=ride.id,
            booking_id=booking.id,
        )

    async def ride_cancelled(self, ride: RideModel, booking: BookingModel):
        return await self.notify(
            booking.passenger_id,
            UserRole.PASSENGER,
            NotificationType.RIDE_CANCELLED,
            "Ride Cancelled",
            f"Your ride from {_route(ride)} has been cancelled by the driver.",
            ride_id=ride.id,
            booking_id=booking.id,
        )

    async def ride_completed(self, ride: RideModel, booking: BookingModel):
        return await self.notify(
            booking.passenger_id,
            UserRole.PASSENGER,
            NotificationType.RIDE_COMPLETED,
            "Ride Completed",
            f"Your ride from {_route(ride)} is complete. Thanks for riding!",
            ride_id=ride.id,
            booking_id=booking.id,
        )

    async def payment_received(self, ride: RideModel, booking: BookingModel, payout, currency: str):
        return await self.notify(
            ride.driver_id,
            UserRole.DRIVER,
            NotificationType.PAYMENT_RECEIVED,
            "Payment Received",
            f"You received {currency} {payout:.2f} for your ride from {_route(ride)}.",
            ride_id=ride.id,
            booking_id=booking.id,
        )

    # ── Recipient side ────────────────────────────────────────────

    async def list_for(self, user_id: int, limit: int = 100):
        notifications = await self.repo.list_for_user(user_id, limit=limit)
        unread = await self.repo.count_unread(user_id)
        return notifications, unread

    async def mark_read(self, notification_id: int, user_id: int) -> NotificationModel:
        notification = await self.repo.mark_read(notification_id, user_id)
        if notification is None:
            raise NotFound("Notification not found")
        return notification

    async def mark_all_read(self, user_id: int) -> int:
        return await self.repo.mark_all_read(user_id)
