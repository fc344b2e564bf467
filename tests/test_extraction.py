import pytest

from portal.domain.bookings.statuses import BookingStatus, PaymentStatus
from portal.domain.webhooks.extraction import (
    BOOKING_ID_STRATEGIES,
    WHOP_EVENT_OUTCOMES,
    extract_booking_id,
    extract_payment_reference,
)


def test_strategy_order():
    assert [name for name, _ in BOOKING_ID_STRATEGIES] == [
        "metadata.bookingId",
        "data.metadata.bookingId",
        "custom_fields.booking_id",
    ]


def test_top_level_metadata_wins():
    payload = {
        "metadata": {"bookingId": "b-top"},
        "data": {"metadata": {"bookingId": "b-data"}},
        "custom_fields": {"booking_id": "b-custom"},
    }
    assert extract_booking_id(payload) == "b-top"


def test_falls_through_to_data_metadata():
    payload = {
        "metadata": {"other": "x"},
        "data": {"metadata": {"bookingId": "b-data"}},
        "custom_fields": {"booking_id": "b-custom"},
    }
    assert extract_booking_id(payload) == "b-data"


def test_custom_fields_last():
    assert extract_booking_id({"custom_fields": {"booking_id": "b-custom"}}) == "b-custom"


def test_numeric_ids_are_stringified():
    assert extract_booking_id({"metadata": {"bookingId": 42}}) == "42"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"metadata": None},
        {"metadata": "bookingId"},
        {"metadata": {"bookingId": ""}},
        {"metadata": {"bookingId": True}},
        {"data": ["not", "a", "dict"]},
        {"custom_fields": {"booking_id": {"nested": 1}}},
    ],
)
def test_missing_or_malformed_references(payload):
    assert extract_booking_id(payload) is None


def test_payment_reference_from_data_id():
    assert extract_payment_reference({"data": {"id": "pay_123"}}) == "pay_123"
    assert extract_payment_reference({"data": {}}) is None


def test_event_outcomes():
    assert WHOP_EVENT_OUTCOMES["payment.succeeded"].status is BookingStatus.APPROVED
    assert WHOP_EVENT_OUTCOMES["payment.succeeded"].payment_status is PaymentStatus.PAID
    assert WHOP_EVENT_OUTCOMES["membership.went_valid"].status is BookingStatus.APPROVED
    assert WHOP_EVENT_OUTCOMES["payment.failed"].status is BookingStatus.PAYMENT_FAILED
    assert WHOP_EVENT_OUTCOMES["membership.went_invalid"].status is BookingStatus.PAYMENT_FAILED
    assert "membership.cancelled" not in WHOP_EVENT_OUTCOMES
