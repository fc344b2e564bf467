import asyncio
from datetime import timedelta

import httpx
import pytest

from portal.domain.events import automation
from portal.domain.events.automation import AutomationHubClient
from portal.domain.events.emitter import STALE_PENDING_AFTER, EventEmitter
from portal.domain.events.repository import EventLog
from portal.domain.events.schemas import (
    DeliveryStatus,
    EventName,
    build_event,
)
from portal.exceptions import DeliveryFailure
from portal.models import PortalEvent, utcnow
from tests.conftest import HUB_API_KEY, HUB_URL


def status_event(booking_id="b-1", **kwargs):
    return build_event(
        EventName.BOOKING_STATUS_UPDATED,
        tenant_id="tenant-1",
        user_id="user-1",
        module_ids=["client-delivery"],
        payload={
            "bookingId": booking_id,
            "oldStatus": "PENDING_PAYMENT",
            "newStatus": "APPROVED",
            "triggeredBy": "webhook",
        },
        **kwargs,
    )


def stored(session_factory, event_id):
    db = session_factory()
    try:
        return EventLog(db).get(event_id)
    finally:
        db.close()


def log_events(session_factory, events):
    db = session_factory()
    try:
        for event in events:
            EventLog(db).append(event)
    finally:
        db.close()


async def test_event_is_logged_then_delivered(session_factory, hub, hub_recorder):
    event = status_event()

    report = await EventEmitter(session_factory, hub).emit(event)

    assert report.logged and report.delivered
    assert report.attempts == 1
    row = stored(session_factory, event.id)
    assert row.delivery_status == DeliveryStatus.DELIVERED.value
    assert row.delivered_at is not None

    request = hub_recorder.requests[0]
    assert str(request.url) == HUB_URL
    assert request.headers["X-API-Key"] == HUB_API_KEY
    body = hub_recorder.bodies[0]
    assert body["id"] == event.id
    assert body["name"] == "booking.status_updated"
    assert body["source"] == "client-portal"
    assert body["tenantId"] == "tenant-1"
    assert body["moduleIds"] == ["client-delivery"]
    assert body["payload"]["newStatus"] == "APPROVED"


async def test_transient_failures_are_retried(session_factory, hub, hub_recorder):
    hub_recorder.statuses = [500, 503]
    event = status_event()

    report = await EventEmitter(session_factory, hub).emit(event)

    assert report.delivered
    assert report.attempts == 3
    assert len(hub_recorder.requests) == 3
    assert all(body["id"] == event.id for body in hub_recorder.bodies)


async def test_exhausted_retries_mark_failed_without_raising(session_factory, hub, hub_recorder):
    hub_recorder.statuses = [500, 500, 500]
    event = status_event()

    report = await EventEmitter(session_factory, hub).emit(event)

    assert report.logged
    assert not report.delivered
    assert report.attempts == 3
    assert "500" in report.error
    row = stored(session_factory, event.id)
    assert row.delivery_status == DeliveryStatus.FAILED.value
    assert row.delivery_attempts == 3


async def test_network_errors_count_as_failed_attempts(session_factory, hub, hub_recorder):
    hub_recorder.error = httpx.ConnectError("connection refused")

    report = await EventEmitter(session_factory, hub).emit(status_event())

    assert not report.delivered
    assert len(hub_recorder.requests) == 3
    assert "ConnectError" in report.error


async def test_backoff_doubles_between_attempts(monkeypatch, hub_recorder):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(automation.asyncio, "sleep", fake_sleep)
    hub_recorder.statuses = [500, 500, 500]
    hub = AutomationHubClient(
        HUB_URL, max_attempts=3, base_delay=1.0, transport=httpx.MockTransport(hub_recorder.handler)
    )

    with pytest.raises(DeliveryFailure) as exc_info:
        await hub.deliver(status_event())

    assert delays == [1.0, 2.0]
    assert exc_info.value.attempts == 3


async def test_total_timeout_bounds_the_retry_loop(session_factory):
    async def slow_handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200)

    hub = AutomationHubClient(
        HUB_URL, base_delay=0, total_timeout=0.05, transport=httpx.MockTransport(slow_handler)
    )
    event = status_event()

    report = await EventEmitter(session_factory, hub).emit(event)

    assert not report.delivered
    assert "timed out" in report.error
    assert stored(session_factory, event.id).delivery_status == DeliveryStatus.FAILED.value


async def test_unconfigured_hub_is_skipped_but_event_logged(session_factory):
    hub = AutomationHubClient(url=None)
    event = status_event()

    report = await EventEmitter(session_factory, hub).emit(event)

    assert report.logged
    assert not report.delivered
    assert stored(session_factory, event.id).delivery_status == DeliveryStatus.SKIPPED.value


async def test_duplicate_event_id_is_delivered_once(session_factory, hub, hub_recorder):
    emitter = EventEmitter(session_factory, hub)
    event = status_event(event_id="5d9a3f0e-3c55-5d43-9a58-7a0c1b2d3e4f")

    first = await emitter.emit(event)
    second = await emitter.emit(event)

    assert first.delivered
    assert second.duplicate
    assert not second.delivered
    assert len(hub_recorder.requests) == 1


async def test_log_write_failure_still_notifies_hub(hub, hub_recorder):
    def broken_session_factory():
        raise RuntimeError("database unavailable")

    report = await EventEmitter(broken_session_factory, hub).emit(status_event())

    assert not report.logged
    assert report.delivered
    assert "event log write failed" in report.error
    assert len(hub_recorder.requests) == 1


async def test_deliver_all_preserves_order_and_marks_rows(session_factory, hub, hub_recorder):
    events = [
        build_event(EventName.BOOKING_CREATED, tenant_id="tenant-1", payload={"bookingId": "b-1"}),
        build_event(EventName.PAYMENT_INTENT_CREATED, tenant_id="tenant-1", payload={"bookingId": "b-1"}),
        status_event(),
    ]
    log_events(session_factory, events)

    reports = await EventEmitter(session_factory, hub).deliver_all(events)

    assert [r.event_id for r in reports] == [e.id for e in events]
    assert all(r.delivered for r in reports)
    assert all(
        stored(session_factory, e.id).delivery_status == DeliveryStatus.DELIVERED.value
        for e in events
    )
    assert hub_recorder.names() == [
        "booking.created",
        "payment.intent_created",
        "booking.status_updated",
    ]


async def test_redeliver_failed_events(session_factory, hub, hub_recorder):
    emitter = EventEmitter(session_factory, hub)
    hub_recorder.statuses = [500, 500, 500]
    event = status_event()
    await emitter.emit(event)

    delivered = await emitter.redeliver_failed()

    assert delivered == 1
    row = stored(session_factory, event.id)
    assert row.delivery_status == DeliveryStatus.DELIVERED.value
    assert row.delivery_attempts == 4
    assert hub_recorder.bodies[-1]["id"] == event.id


async def test_redeliver_picks_up_stale_pending_events(session_factory, hub, hub_recorder):
    stale, fresh = status_event(), status_event(booking_id="b-2")
    log_events(session_factory, [stale, fresh])
    db = session_factory()
    try:
        db.query(PortalEvent).filter(PortalEvent.id == stale.id).update(
            {"recorded_at": utcnow() - STALE_PENDING_AFTER - timedelta(minutes=1)}
        )
        db.commit()
    finally:
        db.close()

    delivered = await EventEmitter(session_factory, hub).redeliver_failed()

    assert delivered == 1
    assert [body["id"] for body in hub_recorder.bodies] == [stale.id]
    assert stored(session_factory, stale.id).delivery_status == DeliveryStatus.DELIVERED.value
    assert stored(session_factory, fresh.id).delivery_status == DeliveryStatus.PENDING.value
