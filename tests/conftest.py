import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from portal import config
from portal.database import Base, build_engine, get_db
from portal.dependencies import get_webhook_secret
from portal.domain.bookings.repository import BookingRepository
from portal.domain.bookings.statuses import BookingStatus
from portal.domain.events.automation import AutomationHubClient
from portal.log_buffer import RingBufferHandler
from portal.main import create_app
from portal.models import Booking, Service
from portal.webhook_security import create_webhook_signature

WEBHOOK_SECRET = "whsec_test_secret"
HUB_URL = "https://hub.example.test/webhook/portal-events"
HUB_API_KEY = "hub-api-key"
ADMIN_KEY = "admin-test-key"

CALLER_HEADERS = {"X-User-Id": "user-1", "X-Tenant-Id": "tenant-1"}
OTHER_CALLER_HEADERS = {"X-User-Id": "user-2", "X-Tenant-Id": "tenant-1"}
ADMIN_HEADERS = {"Authorization": f"Bearer {ADMIN_KEY}"}


class HubRecorder:
    """Stands in for the automation hub behind httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self.statuses = []  # queued response codes, 200 once exhausted
        self.error = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, json={"ok": status < 400})

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def names(self) -> list[str]:
        return [body["name"] for body in self.bodies]


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'portal.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def hub_recorder():
    return HubRecorder()


@pytest.fixture
def hub(hub_recorder):
    return AutomationHubClient(
        url=HUB_URL,
        api_key=HUB_API_KEY,
        max_attempts=3,
        base_delay=0,
        total_timeout=5,
        transport=httpx.MockTransport(hub_recorder.handler),
    )


@pytest.fixture
def log_buffer():
    return RingBufferHandler(capacity=200)


@pytest.fixture
def app(session_factory, hub, log_buffer, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setattr(config, "INTERNAL_API_KEY", None)
    monkeypatch.setattr(config, "ENABLE_WEBHOOK_NOTIFICATIONS", False)

    app = create_app(session_factory=session_factory, hub=hub, log_buffer=log_buffer)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_webhook_secret] = lambda: WEBHOOK_SECRET
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_service(db):
    def _make(**overrides):
        data = {
            "name": "Mixing session",
            "category": "artist",
            "billing_provider": "none",
            "requires_approval": False,
            "base_price_cents": 15000,
            "currency": "USD",
        }
        data.update(overrides)
        service = Service(**data)
        db.add(service)
        db.commit()
        db.refresh(service)
        return service

    return _make


@pytest.fixture
def make_booking(db, make_service):
    """Insert a booking directly in the given status (bypasses creation rules)"""

    def _make(status=BookingStatus.PENDING, service=None, user_id="user-1", tenant_id="tenant-1", **overrides):
        service = service or make_service()
        data = {
            "tenant_id": tenant_id,
            "user_id": user_id,
            "service_id": service.id,
            "module_id": "client-delivery",
            "status": BookingStatus.parse(status).value,
            "payment_provider": service.billing_provider,
            "payment_status": "unpaid",
            "price_cents": service.base_price_cents,
            "currency": service.currency,
        }
        data.update(overrides)
        return BookingRepository.create_booking(db, actor="test", note="seeded", **data)

    return _make


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return create_webhook_signature(secret, body)


def post_webhook(client, payload, event_type=None, signature=None, raw_body=None):
    body = raw_body if raw_body is not None else json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "x-whop-signature": signature if signature is not None else sign(body),
    }
    if event_type:
        headers["x-whop-event"] = event_type
    return client.post("/api/webhooks/whop", content=body, headers=headers)


def reload_booking(db, booking_id):
    """Fresh read of a booking after writes made through other sessions"""
    db.expire_all()
    return db.get(Booking, booking_id)
