"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 4 drivers and 6 passengers (Nairobi phone numbers)
  - 6 active rides between Kenyan towns
  - a handful of bookings: pending, accepted and one cancelled
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import text

from src.domain.entities import Principal
from src.domain.enums import BookingFlow, UserRole
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import UserModel
from src.infrastructure.realtime import RealtimeChannel
from src.infrastructure.redis_client import create_redis
from src.services.bookings import BookingService
from src.services.inventory import RideInventory
from src.services.notifications import NotificationService


USERS = [
    {"name": "Wanjiku Kamau", "email": "wanjiku@example.com", "phone": "254712000001", "role": UserRole.DRIVER},
    {"name": "Otieno Odhiambo", "email": "otieno@example.com", "phone": "254712000002", "role": UserRole.DRIVER},
    {"name": "Achieng Atieno", "email": "achieng@example.com", "phone": "254712000003", "role": UserRole.DRIVER},
    {"name": "Kiprono Kiptoo", "email": "kiprono@example.com", "phone": "254712000004", "role": UserRole.DRIVER},
    {"name": "Njeri Mwangi", "email": "njeri@example.com", "phone": "254722000001", "role": UserRole.PASSENGER},
    {"name": "Mutua Musyoka", "email": "mutua@example.com", "phone": "254722000002", "role": UserRole.PASSENGER},
    {"name": "Akinyi Ouma", "email": "akinyi@example.com", "phone": "254722000003", "role": UserRole.PASSENGER},
    {"name": "Kamau Njoroge", "email": "kamau@example.com", "phone": "254722000004", "role": UserRole.PASSENGER},
    {"name": "Chebet Rotich", "email": "chebet@example.com", "phone": "254722000005", "role": UserRole.PASSENGER},
    {"name": "Wafula Barasa", "email": "wafula@example.com", "phone": "254722000006", "role": UserRole.PASSENGER},
]

# (driver index, origin, destination, days ahead, time, price, seats)
RIDES = [
    (0, "Nairobi", "Nakuru", 1, "07:30", "800.00", 4),
    (0, "Nakuru", "Nairobi", 2, "16:00", "800.00", 4),
    (1, "Nairobi", "Mombasa", 3, "06:00", "2500.00", 3),
    (2, "Kisumu", "Nairobi", 1, "08:15", "1500.00", 5),
    (3, "Eldoret", "Nairobi", 2, "09:00", "1400.00", 6),
    (3, "Nairobi", "Thika", 1, "18:30", "300.00", 2),
]

# (ride index, passenger index, seats, driver accepts?)
BOOKINGS = [
    (0, 4, 1, True),
    (0, 5, 2, False),
    (2, 6, 1, True),
    (3, 7, 2, True),
    (4, 8, 1, False),
]


async def seed():
    channel = RealtimeChannel(create_redis)
    await channel.connect()
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            await channel.close()
            return

        # ── Users ─────────────────────────────────────────────────────
        user_models = []
        for u in USERS:
            m = UserModel(name=u["name"], email=u["email"], phone=u["phone"], role=u["role"])
            session.add(m)
            user_models.append(m)
        await session.flush()
        print(f"  Created {len(user_models)} users")

        # ── Rides ─────────────────────────────────────────────────────
        inventory = RideInventory(session)
        ride_models = []
        for driver_idx, origin, destination, days, time, price, seats in RIDES:
            driver = user_models[driver_idx]
            ride = await inventory.create_ride(
                Principal(driver.id, UserRole.DRIVER),
                origin=origin,
                destination=destination,
                departure_date=date.today() + timedelta(days=days),
                departure_time=time,
                price_per_seat=Decimal(price),
                total_seats=seats,
            )
            ride_models.append(ride)
        await session.commit()
        print(f"  Created {len(ride_models)} rides")

        # ── Bookings (through the lifecycle, so seats stay consistent) ─
        service = BookingService(
            session, NotificationService(session, channel), flow=BookingFlow.REQUEST
        )
        for ride_idx, passenger_idx, seats, accept in BOOKINGS:
            ride = ride_models[ride_idx]
            booking = await service.create_booking(
                ride.id, user_models[passenger_idx].id, seats
            )
            if accept:
                await service.accept_booking(booking.id, ride.driver_id)

        withdrawn = await service.create_booking(
            ride_models[5].id, user_models[9].id, 1, "Might not make it"
        )
        await service.cancel_booking(withdrawn.id, user_models[9].id)
        print(f"  Created {len(BOOKINGS) + 1} bookings")

    await channel.close()
    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
