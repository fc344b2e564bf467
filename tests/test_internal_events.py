import pytest

from portal import config
from portal.domain.bookings.statuses import BookingStatus
from portal.domain.events.repository import EventLog

EVENTS_URL = "/api/internal/events"
AUTH = {"X-API-Key": "internal-key"}


@pytest.fixture
def booking(make_booking):
    return make_booking(BookingStatus.APPROVED, payment_status="paid")


def test_requires_some_credential(client, booking):
    response = client.post(EVENTS_URL, json={"bookingId": booking.id, "newStatus": "IN_PROGRESS"})
    assert response.status_code == 401


def test_presence_only_when_key_not_configured(client, booking, hub_recorder):
    response = client.post(
        EVENTS_URL,
        json={"bookingId": booking.id, "newStatus": "IN_PROGRESS"},
        headers={"Authorization": "Bearer anything"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["delivered"] is True
    body = hub_recorder.bodies[0]
    assert body["id"] == data["eventId"]
    assert body["name"] == "booking.status_updated"
    assert body["tenantId"] == "tenant-1"
    assert body["userId"] == "user-1"
    assert body["moduleIds"] == ["client-delivery"]
    assert body["payload"] == {
        "bookingId": booking.id,
        "oldStatus": "APPROVED",
        "newStatus": "IN_PROGRESS",
        "paymentStatus": "paid",
        "triggeredBy": "system",
    }


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"X-API-Key": "internal-key"}, 200),
        ({"Authorization": "Bearer internal-key"}, 200),
        ({"X-API-Key": "wrong"}, 401),
        ({"Authorization": "Bearer wrong"}, 401),
    ],
)
def test_configured_key_must_match(client, booking, monkeypatch, headers, expected):
    monkeypatch.setattr(config, "INTERNAL_API_KEY", "internal-key")

    response = client.post(
        EVENTS_URL, json={"bookingId": booking.id, "newStatus": "IN_PROGRESS"}, headers=headers
    )

    assert response.status_code == expected


def test_status_is_normalized_to_uppercase(client, booking, hub_recorder):
    response = client.post(
        EVENTS_URL,
        json={
            "bookingId": booking.id,
            "previousStatus": "approved",
            "newStatus": "in_progress",
            "triggeredBy": "admin",
            "moduleId": "data-intelligence",
        },
        headers=AUTH,
    )

    assert response.status_code == 200
    body = hub_recorder.bodies[0]
    assert body["payload"]["oldStatus"] == "APPROVED"
    assert body["payload"]["newStatus"] == "IN_PROGRESS"
    assert body["payload"]["triggeredBy"] == "admin"
    assert body["moduleIds"] == ["data-intelligence"]


@pytest.mark.parametrize(
    "payload",
    [
        {"newStatus": "APPROVED"},
        {"bookingId": "b-1"},
        {"bookingId": "b-1", "newStatus": "SHIPPED"},
        {"bookingId": "b-1", "newStatus": "APPROVED", "triggeredBy": "robot"},
        ["not", "an", "object"],
    ],
)
def test_invalid_payload_is_bad_request(client, payload):
    response = client.post(EVENTS_URL, json=payload, headers=AUTH)
    assert response.status_code == 400


def test_invalid_json_is_bad_request(client):
    response = client.post(
        EVENTS_URL,
        content=b"{oops",
        headers={**AUTH, "Content-Type": "application/json"},
    )
    assert response.status_code == 400


def test_unknown_booking_without_tenant(client):
    response = client.post(
        EVENTS_URL, json={"bookingId": "external-1", "newStatus": "APPROVED"}, headers=AUTH
    )
    assert response.status_code == 404


def test_unknown_booking_with_tenant(client, hub_recorder):
    response = client.post(
        EVENTS_URL,
        json={"bookingId": "external-1", "newStatus": "APPROVED", "tenantId": "tenant-7"},
        headers=AUTH,
    )

    assert response.status_code == 200
    body = hub_recorder.bodies[0]
    assert body["tenantId"] == "tenant-7"
    assert body["payload"]["oldStatus"] == "PENDING"


def test_hub_failure_still_succeeds_and_is_logged(client, db, booking, hub_recorder):
    hub_recorder.statuses = [502, 502, 502]

    response = client.post(
        EVENTS_URL, json={"bookingId": booking.id, "newStatus": "IN_PROGRESS"}, headers=AUTH
    )

    assert response.status_code == 200
    data = response.json()
    assert data["delivered"] is False
    row = EventLog(db).get(data["eventId"])
    assert row.delivery_status == "failed"
    assert row.delivery_attempts == 3
