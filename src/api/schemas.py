"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.enums import (
    BookingStatus,
    PaymentAttemptStatus,
    PaymentStatus,
    RideStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    origin: str = Field(..., min_length=1, max_length=255)
    destination: str = Field(..., min_length=1, max_length=255)
    departure_date: dt.date
    departure_time: str = Field(..., pattern=r"^([01]?\d|2[0-3]):[0-5]\d$")
    price_per_seat: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    total_seats: int = Field(..., ge=1, le=8)
    description: Optional[str] = Field(None, max_length=2000)


class RideUpdateRequest(BaseModel):
    origin: Optional[str] = Field(None, min_length=1, max_length=255)
    destination: Optional[str] = Field(None, min_length=1, max_length=255)
    departure_date: Optional[dt.date] = None
    departure_time: Optional[str] = Field(None, pattern=r"^([01]?\d|2[0-3]):[0-5]\d$")
    price_per_seat: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    total_seats: Optional[int] = Field(None, ge=1, le=8)
    description: Optional[str] = Field(None, max_length=2000)


class BookingCreateRequest(BaseModel):
    ride_id: int
    seats: int = Field(1, ge=1, le=8)
    message: Optional[str] = Field(None, max_length=500)


class PaymentCreateRequest(BaseModel):
    booking_id: int
    phone_number: Optional[str] = Field(
        None,
        description="M-Pesa number; defaults to the passenger's profile phone.",
    )


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    driver_id: int
    origin: str
    destination: str
    departure_date: dt.date
    departure_time: str
    price_per_seat: float
    total_seats: int
    available_seats: int
    status: RideStatus
    description: Optional[str] = None
    created_at: Optional[dt.datetime] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    ride_id: int
    passenger_id: int
    seats_booked: int
    status: BookingStatus
    total_amount: float
    payment_status: PaymentStatus
    message: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    payment_failure_reason: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    model_config = {"from_attributes": True}


class RideCancellationResponse(BaseModel):
    ride: RideResponse
    affected_bookings: list[BookingResponse] = []


class SeatLedgerResponse(BaseModel):
    ride_id: int
    status: RideStatus
    total_seats: int
    available_seats: int
    seats_held: int
    consistent: bool


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    ride_id: Optional[int] = None
    booking_id: Optional[int] = None
    read: bool
    created_at: Optional[dt.datetime] = None

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class MarkedReadResponse(BaseModel):
    updated: int


class PaymentResponse(BaseModel):
    id: int
    booking_id: int
    payer_id: int
    receiver_id: int
    amount: float
    platform_fee: float
    driver_payout: float
    currency: str
    status: PaymentAttemptStatus
    reference: str
    checkout_request_id: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    failure_reason: Optional[str] = None
    processed_at: Optional[dt.datetime] = None
    created_at: Optional[dt.datetime] = None

    model_config = {"from_attributes": True}


class EarningsResponse(BaseModel):
    payments: list[PaymentResponse]
    total_earnings: float
    this_month_earnings: float
    total_transactions: int


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: Optional[str] = None
