import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


def generate_id():
    """Generate an opaque, stable identifier"""
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class Service(Base):
    """Bookable catalog entry. tenant_id NULL means global catalog."""

    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(100), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="other")
    module_id = Column(String(50), nullable=True)  # Overrides the category default
    billing_provider = Column(String(20), nullable=False, default="none")  # none, whop, stripe, manual
    requires_approval = Column(Boolean, default=False, nullable=False)
    base_price_cents = Column(Integer, default=0, nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    payment_url = Column(String(500), nullable=True)  # Checkout link for online providers
    duration_minutes = Column(Integer, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    bookings = relationship("Booking", back_populates="service")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(100), nullable=False, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)
    module_id = Column(String(50), nullable=True)

    # Stored lowercase; see BookingStatus.client_value for the API form
    status = Column(String(30), nullable=False, index=True)

    # Payment
    payment_provider = Column(String(20), nullable=False, default="none")
    payment_status = Column(String(20), nullable=False, default="unpaid")  # unpaid, pending, paid, refunded
    payment_reference = Column(String(255), nullable=True)  # External payment/membership id
    payment_url = Column(String(500), nullable=True)

    # Money in minor units
    price_cents = Column(Integer, default=0, nullable=False)
    currency = Column(String(3), default="USD", nullable=False)

    # Scheduling
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    service = relationship("Service", back_populates="bookings")
    history = relationship(
        "BookingStatusHistory",
        back_populates="booking",
        order_by="BookingStatusHistory.id",
        cascade="all, delete-orphan",
    )
    assets = relationship("Asset", back_populates="booking", cascade="all, delete-orphan")


class BookingStatusHistory(Base):
    """Append-only status trail. One row per transition, creation included."""

    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    status = Column(String(30), nullable=False)
    actor = Column(String(255), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    booking = relationship("Booking", back_populates="history")


class Asset(Base):
    """Metadata for a file attached to a booking (binary lives in external storage)"""

    __tablename__ = "assets"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(100), nullable=False, index=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = Column(String(100), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(20), nullable=False, default="other")  # audio, video, image, document, other
    storage_path = Column(String(500), nullable=False)
    size = Column(Integer, default=0, nullable=False)  # bytes
    mime_type = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    booking = relationship("Booking", back_populates="assets")


class PortalEvent(Base):
    """Durable event log; the row id is the event's idempotency key."""

    __tablename__ = "portal_events"

    id = Column(String(36), primary_key=True)
    name = Column(String(50), nullable=False, index=True)
    source = Column(String(50), nullable=False, default="client-portal")
    tenant_id = Column(String(100), nullable=False, index=True)
    user_id = Column(String(100), nullable=True)
    booking_id = Column(String(36), nullable=True, index=True)
    module_ids = Column(JSON, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Delivery bookkeeping for the automation hub
    delivery_status = Column(String(20), nullable=False, default="pending")  # pending, delivered, failed, skipped
    delivery_attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)


class WebhookReceipt(Base):
    """Audit trail of authenticated provider callbacks and how they were handled"""

    __tablename__ = "webhook_receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(20), nullable=False)
    provider_event_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(100), nullable=True)
    booking_id = Column(String(36), nullable=True, index=True)
    outcome = Column(String(20), nullable=False)  # processed, duplicate, unroutable, ignored, error
    error = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    received_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
