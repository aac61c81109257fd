"""Initial schema: users, rides, bookings, notifications, payments.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_BOOKING_PREDICATE = "status NOT IN ('cancelled', 'declined')"


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="passenger"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, nullable=False),
        sa.Column("origin", sa.String(255), nullable=False),
        sa.Column("destination", sa.String(255), nullable=False),
        sa.Column("departure_date", sa.Date, nullable=False),
        sa.Column("departure_time", sa.String(5), nullable=False),
        sa.Column("price_per_seat", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("available_seats", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_seat_bounds",
        ),
        sa.CheckConstraint("total_seats BETWEEN 1 AND 8", name="ck_rides_total_seats"),
        sa.CheckConstraint("price_per_seat >= 0", name="ck_rides_price"),
    )
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index(
        "idx_rides_departure_status", "rides", ["departure_date", "status"]
    )

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "ride_id",
            sa.Integer,
            sa.ForeignKey("rides.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("passenger_id", sa.Integer, nullable=False),
        sa.Column("seats_booked", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "payment_status", sa.String(20), nullable=False, server_default="pending"
        ),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("mpesa_transaction_id", sa.String(64), nullable=True),
        sa.Column("mpesa_receipt_number", sa.String(64), nullable=True),
        sa.Column("payment_failure_reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("seats_booked >= 1", name="ck_bookings_seats"),
        sa.CheckConstraint("total_amount >= 0", name="ck_bookings_amount"),
    )
    op.create_index(
        "uq_bookings_active_ride_passenger",
        "bookings",
        ["ride_id", "passenger_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_BOOKING_PREDICATE),
    )
    op.create_index(
        "idx_bookings_passenger_status", "bookings", ["passenger_id", "status"]
    )
    op.create_index("idx_bookings_ride_status", "bookings", ["ride_id", "status"])

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column(
            "ride_id",
            sa.Integer,
            sa.ForeignKey("rides.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "booking_id",
            sa.Integer,
            sa.ForeignKey("bookings.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_notifications_user_read", "notifications", ["user_id", "read"]
    )

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=False
        ),
        sa.Column("payer_id", sa.Integer, nullable=False),
        sa.Column("receiver_id", sa.Integer, nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("driver_payout", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="KES"),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("reference", sa.String(64), unique=True, nullable=False),
        sa.Column("checkout_request_id", sa.String(64), unique=True, nullable=True),
        sa.Column(
            "status", sa.String(20), nullable=False, server_default="processing"
        ),
        sa.Column("mpesa_transaction_id", sa.String(64), nullable=True),
        sa.Column("mpesa_receipt_number", sa.String(64), nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_payments_booking", "payments", ["booking_id"])
    op.create_index(
        "idx_payments_status_created", "payments", ["status", "created_at"]
    )
    op.create_index("idx_payments_payer", "payments", ["payer_id"])
    op.create_index(
        "idx_payments_receiver_status", "payments", ["receiver_id", "status"]
    )


def downgrade() -> None:
    op.drop_table("payments")
    op.drop_table("notifications")
    op.drop_table("bookings")
    op.drop_table("rides")
    op.drop_table("users")
