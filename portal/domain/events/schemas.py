"""Domain event schemas - immutable, uniquely identified facts about bookings and assets"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..bookings.statuses import BookingStatus, PaymentStatus, TriggeredBy

EVENT_SOURCE = "client-portal"

# Namespace for ids derived from provider event ids (webhook idempotency keys)
WEBHOOK_EVENT_NAMESPACE = uuid.UUID("6f1c2d3e-8a4b-5c6d-9e0f-a1b2c3d4e5f6")


class EventName(str, Enum):
    BOOKING_CREATED = "booking.created"
    BOOKING_STATUS_UPDATED = "booking.status_updated"
    ASSET_UPLOADED = "asset.uploaded"
    PAYMENT_INTENT_CREATED = "payment.intent_created"
    PAYMENT_COMPLETED = "payment.completed"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainEvent(BaseModel):
    """Normalized portal event. Frozen: built once, never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: EventName
    source: str = EVENT_SOURCE
    tenant_id: str
    user_id: Optional[str] = None
    module_ids: Optional[tuple[str, ...]] = None
    occurred_at: datetime = Field(default_factory=_utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("occurred_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def booking_id(self) -> Optional[str]:
        return self.payload.get("bookingId")

    def to_wire(self) -> dict:
        """Body POSTed to the automation hub"""
        body = {
            "id": self.id,
            "name": self.name.value,
            "source": self.source,
            "tenantId": self.tenant_id,
            "occurredAt": self.occurred_at.isoformat(),
            "payload": self.payload,
        }
        if self.user_id:
            body["userId"] = self.user_id
        if self.module_ids:
            body["moduleIds"] = list(self.module_ids)
        return body


def webhook_event_id(provider: str, provider_event_id: str) -> str:
    """Deterministic event id for a provider callback, so replays map to the same key"""
    return str(uuid.uuid5(WEBHOOK_EVENT_NAMESPACE, f"{provider}:{provider_event_id}"))


def build_event(
    name: EventName,
    tenant_id: str,
    user_id: Optional[str] = None,
    module_ids: Optional[list[str]] = None,
    payload: Optional[dict] = None,
    event_id: Optional[str] = None,
) -> DomainEvent:
    """Build a normalized portal event with defaults"""
    data = {
        "name": name,
        "tenant_id": tenant_id,
        "user_id": user_id,
        "module_ids": tuple(module_ids) if module_ids else None,
        "payload": payload or {},
    }
    if event_id:
        data["id"] = event_id
    return DomainEvent(**data)


def _module_ids(booking) -> Optional[list[str]]:
    return [booking.module_id] if booking.module_id else None


def build_booking_created_event(booking) -> DomainEvent:
    return build_event(
        EventName.BOOKING_CREATED,
        tenant_id=booking.tenant_id,
        user_id=booking.user_id,
        module_ids=_module_ids(booking),
        payload={
            "bookingId": booking.id,
            "serviceId": booking.service_id,
            "status": BookingStatus.parse(booking.status).client_value,
            "priceCents": booking.price_cents,
            "currency": booking.currency,
            "paymentProvider": booking.payment_provider,
            "scheduledAt": booking.scheduled_at.isoformat() if booking.scheduled_at else None,
        },
    )


def build_status_updated_event(
    booking,
    previous_status: BookingStatus,
    triggered_by: TriggeredBy,
    event_id: Optional[str] = None,
    note: Optional[str] = None,
    extra: Optional[dict] = None,
) -> DomainEvent:
    payload = {
        "bookingId": booking.id,
        "oldStatus": BookingStatus.parse(previous_status).client_value,
        "newStatus": BookingStatus.parse(booking.status).client_value,
        "paymentStatus": booking.payment_status,
        "triggeredBy": TriggeredBy(triggered_by).value,
    }
    if note:
        payload["note"] = note
    if extra:
        payload.update(extra)
    return build_event(
        EventName.BOOKING_STATUS_UPDATED,
        tenant_id=booking.tenant_id,
        user_id=booking.user_id,
        module_ids=_module_ids(booking),
        payload=payload,
        event_id=event_id,
    )


def build_payment_intent_event(booking) -> DomainEvent:
    return build_event(
        EventName.PAYMENT_INTENT_CREATED,
        tenant_id=booking.tenant_id,
        user_id=booking.user_id,
        module_ids=_module_ids(booking),
        payload={
            "bookingId": booking.id,
            "amountCents": booking.price_cents,
            "currency": booking.currency,
            "billingProvider": booking.payment_provider,
            "paymentUrl": booking.payment_url,
        },
    )


def build_payment_completed_event(
    booking_id: str,
    tenant_id: str,
    amount_cents: Optional[int] = None,
    currency: Optional[str] = None,
    billing_provider: Optional[str] = None,
    user_id: Optional[str] = None,
    payment_reference: Optional[str] = None,
) -> DomainEvent:
    return build_event(
        EventName.PAYMENT_COMPLETED,
        tenant_id=tenant_id,
        user_id=user_id,
        payload={
            "bookingId": booking_id,
            "amountCents": amount_cents,
            "currency": currency,
            "billingProvider": billing_provider,
            "paymentStatus": PaymentStatus.PAID.value,
            "paymentReference": payment_reference,
        },
    )


def build_asset_uploaded_event(asset, module_ids: Optional[list[str]] = None) -> DomainEvent:
    return build_event(
        EventName.ASSET_UPLOADED,
        tenant_id=asset.tenant_id,
        user_id=asset.user_id,
        module_ids=module_ids,
        payload={
            "bookingId": asset.booking_id,
            "assetId": asset.id,
            "fileName": asset.file_name,
            "fileType": asset.file_type,
            "size": asset.size,
            "mimeType": asset.mime_type,
        },
    )


class InternalStatusChange(BaseModel):
    """Body of POST /api/internal/events"""

    bookingId: str
    newStatus: str
    previousStatus: Optional[str] = None
    moduleId: Optional[str] = None
    paymentStatus: Optional[str] = None
    triggeredBy: TriggeredBy = TriggeredBy.SYSTEM
    tenantId: Optional[str] = None

    @field_validator("newStatus", "previousStatus")
    @classmethod
    def validate_status(cls, v):
        if v is None:
            return v
        return BookingStatus.parse(v).client_value


class EventLogEntry(BaseModel):
    id: str
    name: str
    tenantId: str
    userId: Optional[str] = None
    bookingId: Optional[str] = None
    occurredAt: datetime
    payload: dict
    deliveryStatus: str
    deliveryAttempts: int
    lastError: Optional[str] = None
