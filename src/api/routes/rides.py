"""
Ride endpoints
==============

POST   /api/v1/rides                  -- offer a ride (drivers only)
GET    /api/v1/rides/search           -- active rides with free seats
GET    /api/v1/rides/mine             -- the caller's rides as driver
GET    /api/v1/rides/{ride_id}        -- ride details and seat count
PATCH  /api/v1/rides/{ride_id}        -- edit price, description, or schedule
GET    /api/v1/rides/{ride_id}/bookings -- bookings on a ride (driver)
PATCH  /api/v1/rides/{ride_id}/cancel   -- cancel ride, cascade to bookings
PATCH  /api/v1/rides/{ride_id}/complete -- close ride after the trip
DELETE /api/v1/rides/{ride_id}        -- hard delete a never-booked ride
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from src.api.dependencies import (
    get_booking_service,
    get_db,
    get_principal,
    get_queries,
)
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import (
    BookingResponse,
    RideCancellationResponse,
    RideCreateRequest,
    RideResponse,
    RideUpdateRequest,
)
from src.domain.entities import Principal
from src.services.bookings import BookingService
from src.services.inventory import RideInventory
from src.services.queries import BookingQueries

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Offer a ride",
)
@limiter.limit(RATE_LIMIT)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    principal: Principal = Depends(get_principal),
    db=Depends(get_db),
):
    return await RideInventory(db).create_ride(
        principal,
        origin=body.origin,
        destination=body.destination,
        departure_date=body.departure_date,
        departure_time=body.departure_time,
        price_per_seat=body.price_per_seat,
        total_seats=body.total_seats,
        description=body.description,
    )


@router.get(
    "/search",
    response_model=list[RideResponse],
    summary="Search active rides",
)
@limiter.limit(RATE_LIMIT)
async def search_rides(
    request: Request,
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    departure_date: Optional[date] = Query(None, alias="date"),
    seats: int = Query(1, ge=1, le=8),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.search_rides(origin, destination, departure_date, seats)


@router.get("/mine", response_model=list[RideResponse], summary="My rides as driver")
@limiter.limit(RATE_LIMIT)
async def my_rides(
    request: Request,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.rides_for_driver(principal.user_id)


@router.get("/{ride_id}", response_model=RideResponse, summary="Get a ride")
@limiter.limit(RATE_LIMIT)
async def get_ride(
    request: Request,
    ride_id: int,
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.get_ride(ride_id)


@router.patch(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Edit a ride",
    description=(
        "Driver-only. Price and description can change at any time; existing "
        "bookings keep their total. Date, time and seats are frozen once the "
        "ride has bookings."
    ),
)
@limiter.limit(RATE_LIMIT)
async def update_ride(
    request: Request,
    ride_id: int,
    body: RideUpdateRequest,
    principal: Principal = Depends(get_principal),
    db=Depends(get_db),
):
    return await RideInventory(db).update_ride(
        ride_id, principal.user_id, **body.model_dump(exclude_unset=True)
    )


@router.get(
    "/{ride_id}/bookings",
    response_model=list[BookingResponse],
    summary="Bookings on one of my rides",
)
@limiter.limit(RATE_LIMIT)
async def ride_bookings(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.bookings_for_ride(ride_id, principal.user_id)


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideCancellationResponse,
    summary="Cancel a ride",
    description=(
        "Driver-only. Marks the ride cancelled and cancels every pending or "
        "accepted booking on it, notifying each passenger."
    ),
)
@limiter.limit(RATE_LIMIT)
async def cancel_ride(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    ride, cancelled = await service.cancel_ride(ride_id, principal.user_id)
    return RideCancellationResponse(
        ride=RideResponse.model_validate(ride),
        affected_bookings=[BookingResponse.model_validate(b) for b in cancelled],
    )


@router.patch(
    "/{ride_id}/complete",
    response_model=RideCancellationResponse,
    summary="Mark a ride completed",
)
@limiter.limit(RATE_LIMIT)
async def complete_ride(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    ride, completed = await service.complete_ride(ride_id, principal.user_id)
    return RideCancellationResponse(
        ride=RideResponse.model_validate(ride),
        affected_bookings=[BookingResponse.model_validate(b) for b in completed],
    )


@router.delete("/{ride_id}", status_code=204, summary="Delete a ride with no bookings")
@limiter.limit(RATE_LIMIT)
async def delete_ride(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    await service.delete_ride(ride_id, principal.user_id)
    return Response(status_code=204)
