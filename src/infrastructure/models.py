"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``          -- profile mirror of the external identity provider;
                        user ids elsewhere are plain integers, not foreign keys
* ``rides``          -- driver-posted rides with a cached seat counter
* ``bookings``       -- passenger seat reservations with their lifecycle
* ``notifications``  -- persisted fan-out messages
* ``payments``       -- M-Pesa STK-push attempts against a booking

Constraints
-----------
* ``ck_rides_seat_bounds`` keeps ``0 <= available_seats <= total_seats``
  so an oversold or over-released ride can never be persisted.
* ``uq_bookings_active_ride_passenger`` is a partial unique index: one
  booking per (ride, passenger) unless it was cancelled or declined.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)

from .database import Base
from src.domain.enums import (
    BookingStatus,
    PaymentAttemptStatus,
    PaymentStatus,
    RideStatus,
    UserRole,
)

ACTIVE_BOOKING_INDEX = "uq_bookings_active_ride_passenger"
_ACTIVE_BOOKING_PREDICATE = "status NOT IN ('cancelled', 'declined')"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    """Store enum *values* (``"pending"``) rather than member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(_enum(UserRole, "userrole"), default=UserRole.PASSENGER, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, nullable=False)
    origin = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)
    departure_date = Column(Date, nullable=False)
    departure_time = Column(String(5), nullable=False)  # HH:MM
    price_per_seat = Column(Numeric(10, 2), nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    status = Column(_enum(RideStatus, "ridestatus"), default=RideStatus.ACTIVE, nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_seat_bounds",
        ),
        CheckConstraint("total_seats BETWEEN 1 AND 8", name="ck_rides_total_seats"),
        CheckConstraint("price_per_seat >= 0", name="ck_rides_price"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_departure_status", "departure_date", "status"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id", ondelete="CASCADE"), nullable=False)
    passenger_id = Column(Integer, nullable=False)
    seats_booked = Column(Integer, nullable=False)
    status = Column(
        _enum(BookingStatus, "bookingstatus"),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    total_amount = Column(Numeric(10, 2), nullable=False)
    payment_status = Column(
        _enum(PaymentStatus, "paymentstatus"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    message = Column(Text, nullable=True)
    mpesa_transaction_id = Column(String(64), nullable=True)
    mpesa_receipt_number = Column(String(64), nullable=True)
    payment_failure_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("seats_booked >= 1", name="ck_bookings_seats"),
        CheckConstraint("total_amount >= 0", name="ck_bookings_amount"),
        Index(
            ACTIVE_BOOKING_INDEX,
            "ride_id",
            "passenger_id",
            unique=True,
            postgresql_where=text(_ACTIVE_BOOKING_PREDICATE),
            sqlite_where=text(_ACTIVE_BOOKING_PREDICATE),
        ),
        Index("idx_bookings_passenger_status", "passenger_id", "status"),
        Index("idx_bookings_ride_status", "ride_id", "status"),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    type = Column(String(40), nullable=False)
    title = Column(String(120), nullable=False)
    message = Column(Text, nullable=False)
    ride_id = Column(Integer, ForeignKey("rides.id", ondelete="SET NULL"), nullable=True)
    booking_id = Column(
        Integer, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_notifications_user_read", "user_id", "read"),)


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    payer_id = Column(Integer, nullable=False)
    receiver_id = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    driver_payout = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="KES", nullable=False)
    phone_number = Column(String(20), nullable=False)
    reference = Column(String(64), unique=True, nullable=False)
    checkout_request_id = Column(String(64), unique=True, nullable=True)
    status = Column(
        _enum(PaymentAttemptStatus, "paymentattemptstatus"),
        default=PaymentAttemptStatus.PROCESSING,
        nullable=False,
    )
    mpesa_transaction_id = Column(String(64), nullable=True)
    mpesa_receipt_number = Column(String(64), nullable=True)
    failure_reason = Column(String(255), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_payments_booking", "booking_id"),
        Index("idx_payments_status_created", "status", "created_at"),
        Index("idx_payments_payer", "payer_id"),
        Index("idx_payments_receiver_status", "receiver_id", "status"),
    )
