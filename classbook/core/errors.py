"""
Error taxonomy for the booking engine.

Everything derived from BookingError is a user-facing rejection: GraphQL
mutations turn it into an unsuccessful response and roll back. An
InvariantViolation is an operator problem and is never reported as a
normal rejection.
"""
from typing import Sequence


class BookingError(ValueError):
    """Base class for rejected booking operations"""


class CapacityExceeded(BookingError):
    """Class is full and the organization does not keep a waitlist"""

    def __init__(self, session_id: int, capacity: int):
        super().__init__(f"Class session {session_id} is at full capacity ({capacity})")
        self.session_id = session_id
        self.capacity = capacity


class InvalidBookingRequest(BookingError):
    pass


class BookingNotFound(BookingError):
    def __init__(self, booking_id):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class ClassSessionNotFound(BookingError):
    def __init__(self, session_id: int):
        super().__init__(f"Class session {session_id} not found")
        self.session_id = session_id


class WaitlistEntryNotFound(BookingError):
    def __init__(self, entry_id: int):
        super().__init__(f"Waitlist entry {entry_id} not found")
        self.entry_id = entry_id


class BookingOwnershipError(BookingError):
    pass


class InvalidTransition(BookingError):
    pass


class AlreadyCheckedIn(InvalidTransition):
    def __init__(self, booking_id: int):
        super().__init__(f"Booking {booking_id} is already checked in")
        self.booking_id = booking_id


class SchedulingConflict(BookingError):
    """Proposed class window overlaps synced calendar busy periods"""

    def __init__(self, conflicts: Sequence):
        super().__init__(f"{len(conflicts)} calendar conflict(s) detected")
        self.conflicts = list(conflicts)


class InvalidPolicy(ValueError):
    """Organization no-show settings cannot be interpreted"""


class InvariantViolation(RuntimeError):
    """A ledger invariant did not hold; needs an operator"""


class PenaltyApplicationFailed(Exception):
    def __init__(self, booking_id: int, reason: str):
        super().__init__(f"Penalty for booking {booking_id} failed: {reason}")
        self.booking_id = booking_id
        self.reason = reason


class NotificationFailed(Exception):
    def __init__(self, outbox_id: int, reason: str):
        super().__init__(f"Notification {outbox_id} failed: {reason}")
        self.outbox_id = outbox_id
        self.reason = reason
