"""
Booking reference extraction and provider event mapping for payment webhooks.

Providers put our booking id in different places depending on the product
and checkout flow, so extraction is an explicit priority chain: each strategy
returns an id or None and the first hit wins.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..bookings.statuses import BookingStatus, PaymentStatus

logger = logging.getLogger(__name__)


def _dig(payload: dict, *path: str):
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _as_booking_id(value) -> Optional[str]:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        value = str(value).strip()
        return value or None
    return None


def from_metadata(payload: dict) -> Optional[str]:
    return _as_booking_id(_dig(payload, "metadata", "bookingId"))


def from_data_metadata(payload: dict) -> Optional[str]:
    return _as_booking_id(_dig(payload, "data", "metadata", "bookingId"))


def from_custom_fields(payload: dict) -> Optional[str]:
    return _as_booking_id(_dig(payload, "custom_fields", "booking_id"))


# Tried in order
BOOKING_ID_STRATEGIES: tuple[tuple[str, Callable[[dict], Optional[str]]], ...] = (
    ("metadata.bookingId", from_metadata),
    ("data.metadata.bookingId", from_data_metadata),
    ("custom_fields.booking_id", from_custom_fields),
)


def extract_booking_id(payload: dict) -> Optional[str]:
    """Return the first booking id found by the strategy chain, or None"""
    for name, strategy in BOOKING_ID_STRATEGIES:
        booking_id = strategy(payload)
        if booking_id:
            logger.debug(f"🔍 Booking id found via {name}: {booking_id}")
            return booking_id
    return None


def extract_payment_reference(payload: dict) -> Optional[str]:
    """Provider-side payment/membership id, when the payload carries one"""
    return _as_booking_id(_dig(payload, "data", "id"))


@dataclass(frozen=True)
class PaymentOutcome:
    status: BookingStatus
    payment_status: PaymentStatus


_PAID = PaymentOutcome(BookingStatus.APPROVED, PaymentStatus.PAID)
_FAILED = PaymentOutcome(BookingStatus.PAYMENT_FAILED, PaymentStatus.UNPAID)

# Whop event type -> target booking status. Anything else is acknowledged and ignored.
WHOP_EVENT_OUTCOMES: dict[str, PaymentOutcome] = {
    "payment.succeeded": _PAID,
    "payment_completed": _PAID,
    "membership.went_valid": _PAID,
    "payment.failed": _FAILED,
    "membership.went_invalid": _FAILED,
}
