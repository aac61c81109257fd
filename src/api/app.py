"""
FastAPI application factory.

* Registers routes for rides, bookings, payments, notifications and admin.
* Connects the real-time channel and starts / stops the payment sweeper
  via lifespan events.
* Maps domain errors to stable HTTP statuses and applies rate limiting.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.errors import register_exception_handlers
from src.api.middleware import limiter
from src.api.routes import admin, bookings, notifications, payments, rides
from src.infrastructure.payment_gateway import MpesaGateway
from src.infrastructure.realtime import RealtimeChannel
from src.infrastructure.redis_client import create_redis
from src.workers import payment_sweeper as _sweeper

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the channel and start the sweeper; undo both on shutdown."""
    await app.state.channel.connect()
    lock_client = create_redis()
    await _sweeper.start_sweeper(lock_client, app.state.channel)
    yield
    await _sweeper.stop_sweeper()
    await lock_client.aclose()
    await app.state.channel.close()
    await app.state.gateway.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Share Booking API",
        description=(
            "Seat inventory and booking lifecycle for shared rides.  Drivers "
            "offer seats, passengers book them, and M-Pesa settles payment "
            "once a booking is accepted."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Long-lived collaborators, replaced by tests through dependency overrides
    app.state.channel = RealtimeChannel(create_redis)
    app.state.gateway = MpesaGateway()

    # Error mapping
    register_exception_handlers(app)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
