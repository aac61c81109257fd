"""
Booking amounts and payout split.

Formula
-------
Total  = Seats x Price_Per_Seat                (snapshotted at booking time)
Fee    = round(Total x Platform_Fee_Rate, 2)
Payout = Total - Fee

All arithmetic is done in ``Decimal`` and quantised to cents.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def booking_total(seats: int, price_per_seat) -> Decimal:
    """Amount owed for *seats* at *price_per_seat*."""
    if seats < 1:
        raise ValueError("seats must be at least 1")
    return to_money(Decimal(seats) * to_money(price_per_seat))


@dataclass(frozen=True)
class PayoutSplit:
    amount: Decimal
    platform_fee: Decimal
    driver_payout: Decimal


def split_payment(amount, fee_rate: float) -> PayoutSplit:
    total = to_money(amount)
    fee = to_money(total * Decimal(str(fee_rate)))
    return PayoutSplit(amount=total, platform_fee=fee, driver_payout=total - fee)
