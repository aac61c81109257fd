"""
Payment endpoints
=================

POST /api/v1/payments                 -- start an M-Pesa STK push
GET  /api/v1/payments/mine            -- payments the caller made
GET  /api/v1/payments/earnings        -- succeeded payouts to the caller
GET  /api/v1/payments/{payment_id}    -- one payment (payer or receiver)
POST /api/v1/payments/mpesa/callback  -- Safaricom result webhook
"""

import logging

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_principal, get_queries, get_settlement
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import (
    CallbackAck,
    EarningsResponse,
    PaymentCreateRequest,
    PaymentResponse,
)
from src.domain.entities import Principal
from src.domain.errors import InvalidState, NotFound
from src.infrastructure.payment_gateway import parse_stk_callback
from src.services.queries import BookingQueries
from src.services.settlement import PaymentSettlement

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "",
    status_code=202,
    response_model=PaymentResponse,
    summary="Pay for an accepted booking",
    description=(
        "Sends an STK push to the passenger's phone.  The attempt stays "
        "`processing` until the M-Pesa callback arrives or it times out."
    ),
)
@limiter.limit(RATE_LIMIT)
async def create_payment(
    request: Request,
    body: PaymentCreateRequest,
    principal: Principal = Depends(get_principal),
    settlement: PaymentSettlement = Depends(get_settlement),
):
    return await settlement.initiate_payment(
        body.booking_id, principal.user_id, body.phone_number
    )


@router.get("/mine", response_model=list[PaymentResponse], summary="My payments")
@limiter.limit(RATE_LIMIT)
async def my_payments(
    request: Request,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.payments_for_payer(principal.user_id)


@router.get("/earnings", response_model=EarningsResponse, summary="My earnings as driver")
@limiter.limit(RATE_LIMIT)
async def my_earnings(
    request: Request,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.earnings_for_driver(principal.user_id)


@router.get("/{payment_id}", response_model=PaymentResponse, summary="Get a payment")
@limiter.limit(RATE_LIMIT)
async def get_payment(
    request: Request,
    payment_id: int,
    principal: Principal = Depends(get_principal),
    queries: BookingQueries = Depends(get_queries),
):
    return await queries.get_payment(payment_id, principal.user_id)


@router.post(
    "/mpesa/callback",
    response_model=CallbackAck,
    summary="M-Pesa STK callback",
)
async def mpesa_callback(
    request: Request,
    settlement: PaymentSettlement = Depends(get_settlement),
):
    outcome = parse_stk_callback(await request.json())
    details = {**outcome.details, "ResultDesc": outcome.result_description}
    try:
        await settlement.settle(outcome.checkout_request_id, outcome.success, details)
    except (NotFound, InvalidState) as exc:
        # Stale or unknown callbacks are still acked so Safaricom stops retrying.
        logger.warning(
            "Ignoring callback for %s: %s", outcome.checkout_request_id, exc.message
        )
    return CallbackAck()
