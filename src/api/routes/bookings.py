"""
Booking endpoints
=================

POST  /api/v1/bookings                 -- request seats on a ride
GET   /api/v1/bookings/mine            -- the caller's bookings as passenger
GET   /api/v1/bookings/driver          -- bookings on the caller's rides
GET   /api/v1/bookings/requests        -- pending requests awaiting the driver
GET   /api/v1/bookings/{booking_id}    -- one booking (passenger or driver)
PATCH /api/v1/bookings/{booking_id}/accept
PATCH /api/v1/bookings/{booking_id}/decline
PATCH /api/v1/bookings/{booking_id}/cancel
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_service, get_principal, get_queries
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import BookingCreateRequest, BookingResponse
from src.domain.entities import Principal
from src.services.bookings import BookingService
from src.services.queries import BookingQueries

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Book seats on a ride",
    description=(
        "Reserves the seats immediately.  Depending on the deployment's "
        "booking flow the booking starts as `pending` (driver must accept) "
        "or `accepted`."
    ),
)
@limiter.limit(RATE_LIMIT)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    return await service.create_booking(
        body.ride_id, principal.user_id, body.seats, body.message
    )


@router.get("/mine", response_model=list[BookingResponse], summary="My bookings")
@limiter.limit(RATE_LIMIT)
async def my_bookings(
    request: Request,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.bookings_for_passenger(principal.user_id)


@router.get(
    "/driver",
    response_model=list[BookingResponse],
    summary="Bookings on my rides",
)
@limiter.limit(RATE_LIMIT)
async def driver_bookings(
    request: Request,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.bookings_for_driver(principal.user_id)


@router.get(
    "/requests",
    response_model=list[BookingResponse],
    summary="Pending requests on my rides",
)
@limiter.limit(RATE_LIMIT)
async def pending_requests(
    request: Request,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.pending_requests_for_driver(principal.user_id)


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
@limiter.limit(RATE_LIMIT)
async def get_booking(
    request: Request,
    booking_id: int,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.get_booking(booking_id, principal.user_id)


@router.patch(
    "/{booking_id}/accept",
    response_model=BookingResponse,
    summary="Accept a booking request",
)
@limiter.limit(RATE_LIMIT)
async def accept_booking(
    request: Request,
    booking_id: int,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    return await service.accept_booking(booking_id, principal.user_id)


@router.patch(
    "/{booking_id}/decline",
    response_model=BookingResponse,
    summary="Decline a booking request",
)
@limiter.limit(RATE_LIMIT)
async def decline_booking(
    request: Request,
    booking_id: int,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    return await service.decline_booking(booking_id, principal.user_id)


@router.patch(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel my booking",
)
@limiter.limit(RATE_LIMIT)
async def cancel_booking(
    request: Request,
    booking_id: int,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    return await service.cancel_booking(booking_id, principal.user_id)
