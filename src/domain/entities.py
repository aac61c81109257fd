"""
Domain value objects and lifecycle rules.

Patterns used
-------------
- **State Pattern** on bookings: ``ensure_transition`` enforces the
  lifecycle (PENDING -> ACCEPTED | DECLINED, ACCEPTED -> COMPLETED |
  CANCELLED, PENDING -> CANCELLED).
- ``Principal`` is the authenticated actor handed in by the identity
  provider.  The role enum is the single source of truth; ``is_driver``
  is derived from it.
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import (
    BOOKING_TRANSITIONS,
    RIDE_TRANSITIONS,
    BookingStatus,
    RideStatus,
    UserRole,
)
from .errors import AlreadyTerminal, InvalidState


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: UserRole = UserRole.PASSENGER

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER


# ── Lifecycle rules ───────────────────────────────────────────────────


def ensure_transition(current: BookingStatus, new_status: BookingStatus) -> None:
    """Raise ``InvalidState`` unless *current* -> *new_status* is legal."""
    current = BookingStatus(current)
    if new_status not in BOOKING_TRANSITIONS[current]:
        raise InvalidState(
            f"Cannot transition booking from {current.value} to {new_status.value}"
        )


def ensure_ride_transition(current: RideStatus, new_status: RideStatus) -> None:
    current = RideStatus(current)
    if new_status not in RIDE_TRANSITIONS[current]:
        raise AlreadyTerminal(f"Ride is already {current.value}")
