"""
Error taxonomy for the booking lifecycle and payment-event pipeline.

Routers translate these into HTTP responses; services and the state machine
raise them without knowing about HTTP.
"""

from typing import Optional


class PortalError(Exception):
    """Base class for booking portal domain errors"""

    pass


class AuthenticationError(PortalError):
    """Raised when a webhook signature or internal API credential is missing or wrong"""

    pass


class InvalidPayload(PortalError):
    """Raised when an inbound body is not structurally valid JSON"""

    pass


class BookingNotFound(PortalError):
    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking not found: {booking_id}")


class InvalidTransition(PortalError):
    """Raised when a status change is not an edge of the transition table"""

    def __init__(self, current_status, new_status, reason: Optional[str] = None):
        self.current_status = current_status
        self.new_status = new_status
        if reason is None:
            reason = (
                f"Cannot change booking status from {current_status.client_value} "
                f"to {new_status.client_value}"
            )
        super().__init__(reason)


class ConflictError(PortalError):
    """Raised when a concurrent writer changed the booking status first"""

    def __init__(self, booking_id: str, expected_status=None):
        self.booking_id = booking_id
        self.expected_status = expected_status
        super().__init__(f"Booking {booking_id} was modified concurrently")


class UnroutableEvent(PortalError):
    """A provider event that carries no booking reference. Acknowledged, not a failure."""

    pass


class DeliveryFailure(PortalError):
    """Remote automation hub delivery exhausted its retries or timed out"""

    def __init__(self, event_id: str, attempts: int, last_error: Optional[str] = None):
        self.event_id = event_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Delivery of event {event_id} failed after {attempts} attempt(s): {last_error}"
        )
