"""
Internal events router

Lets trusted internal services announce a booking status change. The event goes
through the same emitter as every other portal event (event log first, then the
automation hub).
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...database import get_db
from ...dependencies import get_event_emitter, require_internal_api_key
from ..bookings.repository import BookingRepository
from ..bookings.statuses import BookingStatus
from .emitter import EventEmitter
from .schemas import EventName, InternalStatusChange, build_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/internal", tags=["Internal"])


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return f"Invalid payload: {field}: {first.get('msg')}"


@router.post("/events", dependencies=[Depends(require_internal_api_key)])
async def receive_internal_event(
    request: Request,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_event_emitter),
):
    """Forward a booking status change to the automation hub"""
    try:
        body = json.loads(await request.body())
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning(
            "⚠️ Internal event with invalid JSON body",
            extra={"event_type": "internal.invalid_payload"},
        )
        raise HTTPException(status_code=400, detail="Invalid JSON")

    try:
        change = InternalStatusChange.model_validate(body)
    except ValidationError as e:
        logger.warning(
            f"⚠️ Invalid booking status change event payload: {e.error_count()} error(s)",
            extra={"event_type": "internal.invalid_payload"},
        )
        raise HTTPException(status_code=400, detail=_validation_message(e))

    booking = BookingRepository.get_booking(db, change.bookingId)
    tenant_id = change.tenantId or (booking.tenant_id if booking else None)
    if not tenant_id:
        logger.warning(
            f"⚠️ Internal event for unknown booking {change.bookingId}",
            extra={"event_type": "internal.unknown_booking", "booking_id": change.bookingId},
        )
        raise HTTPException(status_code=404, detail="Booking not found")

    previous_status = change.previousStatus
    if not previous_status:
        previous_status = (
            BookingStatus.parse(booking.status).client_value
            if booking
            else BookingStatus.PENDING.client_value
        )

    module_id = change.moduleId or (booking.module_id if booking else None)
    payload = {
        "bookingId": change.bookingId,
        "oldStatus": previous_status,
        "newStatus": change.newStatus,
        "paymentStatus": change.paymentStatus or (booking.payment_status if booking else None),
        "triggeredBy": change.triggeredBy.value,
    }
    event = build_event(
        EventName.BOOKING_STATUS_UPDATED,
        tenant_id=tenant_id,
        user_id=booking.user_id if booking else None,
        module_ids=[module_id] if module_id else None,
        payload=payload,
    )

    logger.info(
        f"📥 Booking status change event received for {change.bookingId}: {previous_status} → {change.newStatus}",
        extra={
            "event_type": "internal.event_received",
            "event_id": event.id,
            "booking_id": change.bookingId,
        },
    )

    report = await emitter.emit(event)
    return {"success": True, "eventId": event.id, "delivered": report.delivered}
