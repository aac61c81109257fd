"""
Ride Inventory
==============

Owns a ride's status and its ``available_seats`` counter.

Seat counter discipline
-----------------------
* ``reserve_seats`` -- one conditional UPDATE
  (``status = active AND available_seats >= n``); concurrent callers can
  never oversell because the check and the decrement are one statement.
* ``release_seats`` -- increment clamped at ``total_seats`` in the same
  statement, as a net against double releases.

Apart from ``update_ride`` resetting it together with ``total_seats``
while no seat is held, no other code path writes ``available_seats``.
These methods never commit; the calling service owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import Principal, ensure_ride_transition
from src.domain.enums import RideStatus
from src.domain.errors import (
    InsufficientCapacity,
    InvalidState,
    NotFound,
    RideNotActive,
    Unauthorized,
)
from src.domain.pricing import to_money
from src.infrastructure.models import BookingModel, RideModel
from src.infrastructure.repositories import BookingRepository, RideRepository

logger = logging.getLogger(__name__)

MAX_SEATS = 8

# Frozen once anyone has booked the ride.
SCHEDULE_FIELDS = frozenset({"departure_date", "departure_time", "total_seats"})
EDITABLE_FIELDS = SCHEDULE_FIELDS | {"origin", "destination", "price_per_seat", "description"}


class RideInventory:
    def __init__(self, session: AsyncSession):
        self.rides = RideRepository(session)
        self.bookings = BookingRepository(session)

    async def get(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise NotFound("Ride not found")
        return ride

    async def create_ride(
        self,
        driver: Principal,
        *,
        origin: str,
        destination: str,
        departure_date: date,
        departure_time: str,
        price_per_seat: Decimal,
        total_seats: int,
        description: Optional[str] = None,
    ) -> RideModel:
        if not driver.is_driver:
            raise Unauthorized("Only drivers can offer rides")
        if not 1 <= total_seats <= MAX_SEATS:
            raise ValueError(f"total_seats must be between 1 and {MAX_SEATS}")
        if Decimal(str(price_per_seat)) < 0:
            raise ValueError("price_per_seat cannot be negative")

        ride = await self.rides.create(
            RideModel(
                driver_id=driver.user_id,
                origin=origin.strip(),
                destination=destination.strip(),
                departure_date=departure_date,
                departure_time=departure_time,
                price_per_seat=to_money(price_per_seat),
                total_seats=total_seats,
                available_seats=total_seats,
                status=RideStatus.ACTIVE,
                description=description,
            )
        )
        logger.info("Ride %s created by driver %s", ride.id, driver.user_id)
        return ride

    async def update_ride(self, ride_id: int, actor_id: int, **changes) -> RideModel:
        """Edit an active ride owned by *actor_id*.

        Price and description stay editable; bookings keep the total they
        were created with.  Date, time and seat count cannot change once
        the ride has any booking.
        """
        unknown = changes.keys() - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in changes.items() if v is not None}

        ride = await self._owned(ride_id, actor_id)
        if RideStatus(ride.status) != RideStatus.ACTIVE:
            raise RideNotActive(f"Ride is {RideStatus(ride.status).value}")
        if not changes:
            return ride

        if "total_seats" in changes and not 1 <= changes["total_seats"] <= MAX_SEATS:
            raise ValueError(f"total_seats must be between 1 and {MAX_SEATS}")
        if "price_per_seat" in changes:
            if Decimal(str(changes["price_per_seat"])) < 0:
                raise ValueError("price_per_seat cannot be negative")
            changes["price_per_seat"] = to_money(changes["price_per_seat"])
        for field in ("origin", "destination"):
            if field in changes:
                changes[field] = changes[field].strip()

        if SCHEDULE_FIELDS & changes.keys() and await self.bookings.count_for_ride(ride_id):
            raise InvalidState("Cannot modify date, time, or seats when ride has bookings")

        updated = await self.rides.update_details(ride_id, changes)
        if updated is None:
            raise InvalidState("Ride changed concurrently; retry")
        logger.info(
            "Ride %s updated by driver %s (%s)", ride_id, actor_id, ", ".join(sorted(changes))
        )
        return updated

    async def reserve_seats(self, ride_id: int, count: int) -> RideModel:
        if count < 1:
            raise ValueError("seat count must be at least 1")
        ride = await self.rides.decrement_seats(ride_id, count)
        if ride is not None:
            return ride

        # Condition failed -- find out why for the caller.
        current = await self.get(ride_id)
        if RideStatus(current.status) != RideStatus.ACTIVE:
            raise RideNotActive(f"Ride is {RideStatus(current.status).value}")
        raise InsufficientCapacity(
            f"Only {current.available_seats} seat(s) available"
        )

    async def release_seats(self, ride_id: int, count: int) -> RideModel:
        before = await self.get(ride_id)
        if before.available_seats + count > before.total_seats:
            logger.warning(
                "Seat release on ride %s clamped (available=%d, releasing=%d, total=%d)",
                ride_id,
                before.available_seats,
                count,
                before.total_seats,
            )
        ride = await self.rides.increment_seats(ride_id, count)
        if ride is None:
            raise NotFound("Ride not found")
        return ride

    async def _owned(self, ride_id: int, actor_id: int) -> RideModel:
        ride = await self.get(ride_id)
        if ride.driver_id != actor_id:
            raise Unauthorized("Only the ride's driver can do this")
        return ride

    async def _close(
        self, ride_id: int, actor_id: int, new_status: RideStatus
    ) -> tuple[RideModel, list[BookingModel]]:
        ride = await self._owned(ride_id, actor_id)
        ensure_ride_transition(ride.status, new_status)

        closed = await self.rides.transition_status(
            ride_id, RideStatus.ACTIVE, new_status
        )
        if closed is None:
            # Lost a race with another close.
            current = await self.get(ride_id)
            ensure_ride_transition(current.status, new_status)
            raise InvalidState("Ride changed concurrently; retry")

        holding = await self.bookings.seat_holding_for_ride(ride_id)
        logger.info(
            "Ride %s %s by driver %s (%d seat-holding bookings)",
            ride_id,
            new_status.value,
            actor_id,
            len(holding),
        )
        return closed, holding

    async def cancel_ride(
        self, ride_id: int, actor_id: int
    ) -> tuple[RideModel, list[BookingModel]]:
        """Mark the ride cancelled; return the bookings still holding seats."""
        return await self._close(ride_id, actor_id, RideStatus.CANCELLED)

    async def complete_ride(
        self, ride_id: int, actor_id: int
    ) -> tuple[RideModel, list[BookingModel]]:
        return await self._close(ride_id, actor_id, RideStatus.COMPLETED)

    async def delete_ride(self, ride_id: int, actor_id: int) -> None:
        """Hard delete, only while nobody has ever booked the ride."""
        await self._owned(ride_id, actor_id)
        if await self.bookings.count_for_ride(ride_id):
            raise InvalidState("Rides with bookings can only be cancelled")
        await self.rides.delete(ride_id)
        logger.info("Ride %s deleted by driver %s", ride_id, actor_id)

    async def seat_ledger(self, ride_id: int) -> dict:
        """Compare the cached counter with the seats held by live bookings."""
        ride = await self.get(ride_id)
        held = await self.bookings.seats_held_for_ride(ride_id)
        return {
            "ride_id": ride.id,
            "status": RideStatus(ride.status).value,
            "total_seats": ride.total_seats,
            "available_seats": ride.available_seats,
            "seats_held": held,
            "consistent": (
                RideStatus(ride.status) != RideStatus.ACTIVE
                or ride.total_seats - ride.available_seats == held
            ),
        }
