"""
Admin / observability endpoints
===============================

GET /api/v1/admin/rides/{ride_id}/seats -- seat counter vs. bookings held
GET /api/v1/admin/health                -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import HealthResponse, SeatLedgerResponse
from src.services.inventory import RideInventory

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/rides/{ride_id}/seats",
    response_model=SeatLedgerResponse,
    summary="Check a ride's seat counter against its bookings",
)
@limiter.limit(RATE_LIMIT)
async def seat_ledger(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await RideInventory(db).seat_ledger(ride_id)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
