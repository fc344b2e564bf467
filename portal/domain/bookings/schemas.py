"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .statuses import BookingStatus


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken as UTC; aware ones are converted to UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BookingCreate(BaseModel):
    """Schema for creating a new booking"""

    serviceId: str
    scheduledAt: Optional[datetime] = None
    startAt: Optional[datetime] = None
    endAt: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=5000)
    draft: bool = False  # Save without submitting

    @field_validator("scheduledAt", "startAt", "endAt")
    @classmethod
    def normalize_times(cls, v):
        return _to_utc(v)

    @model_validator(mode="after")
    def check_window(self):
        if self.startAt and self.endAt and self.endAt <= self.startAt:
            raise ValueError("endAt must be after startAt")
        return self


class BookingReschedule(BaseModel):
    scheduledAt: Optional[datetime] = None
    startAt: Optional[datetime] = None
    endAt: Optional[datetime] = None

    @field_validator("scheduledAt", "startAt", "endAt")
    @classmethod
    def normalize_times(cls, v):
        return _to_utc(v)

    @model_validator(mode="after")
    def check_window(self):
        if not (self.scheduledAt or self.startAt or self.endAt):
            raise ValueError("Provide at least one of scheduledAt, startAt, endAt")
        if self.startAt and self.endAt and self.endAt <= self.startAt:
            raise ValueError("endAt must be after startAt")
        return self


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class StatusChangeRequest(BaseModel):
    """Admin-initiated status change"""

    status: str
    note: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        return BookingStatus.parse(v).value


class ManualPaymentRequest(BaseModel):
    reference: Optional[str] = Field(default=None, max_length=255)
    note: Optional[str] = Field(default=None, max_length=1000)


class AssetCreate(BaseModel):
    fileName: str = Field(max_length=255)
    fileType: str = "other"
    storagePath: str = Field(max_length=500)
    size: int = Field(default=0, ge=0)
    mimeType: Optional[str] = None

    @field_validator("fileType")
    @classmethod
    def validate_file_type(cls, v):
        allowed = {"audio", "video", "image", "document", "other"}
        if v not in allowed:
            raise ValueError(f"fileType must be one of {sorted(allowed)}")
        return v


class HistoryEntryResponse(BaseModel):
    status: str
    actor: str
    note: Optional[str] = None
    at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry) -> "HistoryEntryResponse":
        return cls(
            status=BookingStatus.parse(entry.status).client_value,
            actor=entry.actor,
            note=entry.note,
            at=entry.created_at,
        )


class BookingResponse(BaseModel):
    """Schema for booking response. Statuses are uppercase at this boundary."""

    id: str
    tenantId: str
    userId: str
    serviceId: str
    moduleId: Optional[str] = None
    status: str
    statusLabel: str
    paymentProvider: str
    paymentStatus: str
    paymentUrl: Optional[str] = None
    priceCents: int
    currency: str
    scheduledAt: Optional[datetime] = None
    startAt: Optional[datetime] = None
    endAt: Optional[datetime] = None
    notes: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        status = BookingStatus.parse(booking.status)
        return cls(
            id=booking.id,
            tenantId=booking.tenant_id,
            userId=booking.user_id,
            serviceId=booking.service_id,
            moduleId=booking.module_id,
            status=status.client_value,
            statusLabel=status.label,
            paymentProvider=booking.payment_provider,
            paymentStatus=booking.payment_status,
            paymentUrl=booking.payment_url,
            priceCents=booking.price_cents,
            currency=booking.currency,
            scheduledAt=booking.scheduled_at,
            startAt=booking.start_at,
            endAt=booking.end_at,
            notes=booking.notes,
            createdAt=booking.created_at,
            updatedAt=booking.updated_at,
        )


class BookingDetailResponse(BookingResponse):
    history: list[HistoryEntryResponse] = []


class AssetResponse(BaseModel):
    id: str
    bookingId: str
    fileName: str
    fileType: str
    storagePath: str
    size: int
    mimeType: Optional[str] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_asset(cls, asset) -> "AssetResponse":
        return cls(
            id=asset.id,
            bookingId=asset.booking_id,
            fileName=asset.file_name,
            fileType=asset.file_type,
            storagePath=asset.storage_path,
            size=asset.size,
            mimeType=asset.mime_type,
            createdAt=asset.created_at,
        )
