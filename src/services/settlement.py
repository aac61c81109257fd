"""
Payment Settlement Adapter
==========================

Bridges the M-Pesa STK-push flow into booking state.

* Payment is only possible once the driver has accepted the booking;
  acceptance itself never waits for payment.
* ``initiate_payment`` records a ``processing`` attempt, then calls the
  gateway outside the transaction.  A gateway error settles the attempt
  as failed and is re-raised as ``UpstreamFailure``.
* ``settle`` applies the asynchronous callback.  Success marks the
  booking paid and tells the driver; failure marks it failed and leaves
  the booking status alone.
* ``expire_stale_payments`` fails attempts whose callback never came.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, settings as default_settings
from src.domain.enums import BookingStatus, PaymentAttemptStatus, PaymentStatus
from src.domain.errors import InvalidState, NotFound, Unauthorized, UpstreamFailure
from src.domain.pricing import split_payment
from src.infrastructure.models import PaymentModel
from src.infrastructure.payment_gateway import PaymentGateway, normalize_msisdn
from src.infrastructure.repositories import (
    BookingRepository,
    PaymentRepository,
    RideRepository,
    UserRepository,
)
from src.services.base import TransactionalService
from src.services.notifications import NotificationService

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "Payment gateway timed out"


class PaymentSettlement(TransactionalService):
    def __init__(
        self,
        session: AsyncSession,
        notifications: NotificationService,
        gateway: Optional[PaymentGateway] = None,
        config: Settings | None = None,
    ):
        super().__init__(session, notifications)
        self.gateway = gateway
        self.config = config or default_settings
        self.bookings = BookingRepository(session)
        self.payments = PaymentRepository(session)
        self.rides = RideRepository(session)
        self.users = UserRepository(session)

    async def initiate_payment(
        self, booking_id: int, actor_id: int, phone_number: Optional[str] = None
    ) -> PaymentModel:
        if self.gateway is None:
            raise UpstreamFailure("No payment gateway configured")

        async with self.transaction():
            booking = await self.bookings.get_by_id(booking_id)
            if booking is None:
                raise NotFound("Booking not found")
            if booking.passenger_id != actor_id:
                raise Unauthorized("Only the passenger can pay for this booking")
            if BookingStatus(booking.status) != BookingStatus.ACCEPTED:
                raise InvalidState("Booking must be accepted before payment")
            if PaymentStatus(booking.payment_status) == PaymentStatus.PAID:
                raise InvalidState("Payment already completed")
            if await self.payments.get_processing_for_booking(booking_id):
                raise InvalidState("A payment for this booking is already in progress")

            if not phone_number:
                payer = await self.users.get_by_id(actor_id)
                phone_number = payer.phone if payer else None
            if not phone_number:
                raise ValueError("An M-Pesa phone number is required")
            msisdn = normalize_msisdn(phone_number)

            ride = await self.rides.get_by_id(booking.ride_id)
            split = split_payment(booking.total_amount, self.config.platform_fee_rate)
            payment = await self.payments.create(
                PaymentModel(
                    booking_id=booking.id,
                    payer_id=actor_id,
                    receiver_id=ride.driver_id,
                    amount=split.amount,
                    platform_fee=split.platform_fee,
                    driver_payout=split.driver_payout,
                    currency=self.config.currency,
                    phone_number=msisdn,
                    reference=f"BK{booking.id}-{uuid.uuid4().hex[:8].upper()}",
                    status=PaymentAttemptStatus.PROCESSING,
                )
            )

        try:
            result = await self.gateway.initiate(msisdn, payment.amount, payment.reference)
        except UpstreamFailure as exc:
            logger.warning("STK push for booking %s failed: %s", booking_id, exc.message)
            await self._record_failure(payment, exc.message)
            raise

        async with self.transaction():
            payment.checkout_request_id = result.checkout_request_id
            await self.session.flush()

        logger.info(
            "Payment %s initiated for booking %s (%s)",
            payment.id,
            booking_id,
            result.checkout_request_id,
        )
        return payment

    async def settle(
        self, checkout_request_id: str, success: bool, details: dict[str, Any] | None = None
    ) -> PaymentModel:
        """Apply the gateway's outcome for *checkout_request_id*."""
        details = details or {}
        async with self.transaction():
            payment = await self.payments.get_by_checkout_request_id(checkout_request_id)
            if payment is None:
                raise NotFound("Unknown payment reference")
            payment = await self._apply(payment, success, details)
        return payment

    async def expire_stale_payments(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.config.payment_timeout_seconds)
        expired = 0
        async with self.transaction():
            for payment in await self.payments.stale_processing(cutoff):
                try:
                    await self._apply(
                        payment, False, {"reason": TIMEOUT_REASON}, strict=False
                    )
                except InvalidState:
                    continue
                expired += 1
        if expired:
            logger.info("Expired %d stale payment(s)", expired)
        return expired

    # ── Internals ─────────────────────────────────────────────────

    async def _record_failure(self, payment: PaymentModel, reason: str) -> None:
        async with self.transaction():
            fresh = await self.payments.get_by_id(payment.id)
            await self._apply(fresh, False, {"reason": reason}, strict=False)

    async def _apply(
        self,
        payment: PaymentModel,
        success: bool,
        details: dict[str, Any],
        strict: bool = True,
    ) -> PaymentModel:
        """Close *payment*, then record the outcome on its booking.

        The attempt is closed first with a conditional update, so an attempt
        another callback or sweep already closed never touches the booking.
        With ``strict=False`` a failure is recorded on the attempt even if
        the booking is no longer accepted.
        """
        if PaymentAttemptStatus(payment.status) != PaymentAttemptStatus.PROCESSING:
            raise InvalidState("Payment already settled")

        now = datetime.now(timezone.utc)
        if success:
            receipt = details.get("MpesaReceiptNumber")
            transaction_id = details.get("TransactionID") or receipt
            closed = await self.payments.finish(
                payment.id,
                status=PaymentAttemptStatus.SUCCEEDED,
                mpesa_transaction_id=transaction_id,
                mpesa_receipt_number=receipt,
                processed_at=now,
            )
            if closed is None:
                raise InvalidState("Payment already settled")
            booking = await self.bookings.set_payment_outcome(
                closed.booking_id,
                payment_status=PaymentStatus.PAID,
                mpesa_transaction_id=transaction_id,
                mpesa_receipt_number=receipt,
                payment_failure_reason=None,
            )
            if booking is None:
                raise InvalidState("Only accepted bookings can be settled")
            ride = await self.rides.get_by_id(booking.ride_id)
            await self.notifications.payment_received(
                ride, booking, closed.driver_payout, closed.currency
            )
            logger.info("Booking %s paid (receipt %s)", booking.id, receipt)
            return closed

        reason = str(details.get("reason") or details.get("ResultDesc") or "Payment failed")
        closed = await self.payments.finish(
            payment.id,
            status=PaymentAttemptStatus.FAILED,
            failure_reason=reason,
            processed_at=now,
        )
        if closed is None:
            raise InvalidState("Payment already settled")
        booking = await self.bookings.set_payment_outcome(
            closed.booking_id,
            payment_status=PaymentStatus.FAILED,
            payment_failure_reason=reason,
        )
        if booking is None and strict:
            raise InvalidState("Only accepted bookings can be settled")
        logger.info("Payment for booking %s failed: %s", closed.booking_id, reason)
        return closed
