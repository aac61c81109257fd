"""
Typed error taxonomy for the booking core.

Every rejected precondition raises one of these.  Each kind carries a
stable ``code`` and an HTTP ``status_code`` so the API layer can map it
without inspecting messages.
"""


class BookingCoreError(Exception):
    code = "booking_error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Unauthorized(BookingCoreError):
    """Actor lacks the required relationship to the entity."""

    code = "unauthorized"
    status_code = 403


class NotFound(BookingCoreError):
    code = "not_found"
    status_code = 404


class InvalidState(BookingCoreError):
    """Requested transition is not legal from the current state."""

    code = "invalid_state"
    status_code = 409


class AlreadyTerminal(BookingCoreError):
    code = "already_terminal"
    status_code = 409


class InsufficientCapacity(BookingCoreError):
    """Seat reservation cannot be satisfied."""

    code = "insufficient_capacity"
    status_code = 409


class RideNotActive(InsufficientCapacity):
    """Reservation rejected because the ride is no longer active."""

    code = "ride_not_active"


class DuplicateBooking(BookingCoreError):
    code = "duplicate_booking"
    status_code = 409


class SelfBookingForbidden(BookingCoreError):
    code = "self_booking_forbidden"
    status_code = 400


class UpstreamFailure(BookingCoreError):
    """Payment gateway, real-time channel or store failure."""

    code = "upstream_failure"
    status_code = 502


class ChannelNotInitialized(UpstreamFailure):
    code = "channel_not_initialized"
