"""
Admin routes - operator endpoints for booking status, manual payments and
webhook/event observability
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_event_emitter, get_log_buffer, require_admin
from ..domain.bookings.schemas import BookingResponse, ManualPaymentRequest, StatusChangeRequest
from ..domain.bookings.service import BookingService
from ..domain.events.emitter import EventEmitter
from ..domain.events.repository import EventLog
from ..domain.events.schemas import DeliveryStatus, EventLogEntry
from ..log_buffer import RingBufferHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.post("/bookings/{booking_id}/status", response_model=BookingResponse)
async def change_booking_status(
    booking_id: str,
    data: StatusChangeRequest,
    background_tasks: BackgroundTasks,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_event_emitter),
):
    """Move a booking along the transition table (approve, decline, start, complete...)"""
    booking, events = BookingService(db).admin_transition(booking_id, data.status, actor, data.note)
    background_tasks.add_task(emitter.deliver_all, events)
    return BookingResponse.from_booking(booking)


@router.post("/bookings/{booking_id}/payments", response_model=BookingResponse)
async def record_manual_payment(
    booking_id: str,
    data: ManualPaymentRequest,
    background_tasks: BackgroundTasks,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_event_emitter),
):
    """Record an offline payment: booking becomes paid and APPROVED"""
    booking, events = BookingService(db).record_manual_payment(
        booking_id, actor, reference=data.reference, note=data.note
    )
    background_tasks.add_task(emitter.deliver_all, events)
    return BookingResponse.from_booking(booking)


@router.get("/webhook-logs")
async def get_webhook_logs(
    level: Optional[str] = Query(None),
    eventType: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    _actor: str = Depends(require_admin),
    log_buffer: RingBufferHandler = Depends(get_log_buffer),
):
    """Recent webhook/event logs, newest first"""
    if level and level not in {"info", "warn", "error", "debug"}:
        raise HTTPException(status_code=400, detail="level must be one of info, warn, error, debug")

    logs = log_buffer.get_logs(level=level, event_type=eventType, limit=limit)
    return {"logs": logs, "count": len(logs), "capacity": log_buffer.capacity}


@router.delete("/webhook-logs")
async def clear_webhook_logs(
    actor: str = Depends(require_admin),
    log_buffer: RingBufferHandler = Depends(get_log_buffer),
):
    log_buffer.clear()
    logger.info(f"🗑️ Webhook logs cleared by {actor}")
    return {"success": True}


@router.get("/events", response_model=list[EventLogEntry])
async def list_events(
    bookingId: Optional[str] = Query(None),
    deliveryStatus: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    _actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Event log, most recent first"""
    if deliveryStatus:
        try:
            deliveryStatus = DeliveryStatus(deliveryStatus.lower()).value
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown delivery status: {deliveryStatus}")

    rows = EventLog(db).list_events(booking_id=bookingId, delivery_status=deliveryStatus, limit=limit)
    return [
        EventLogEntry(
            id=row.id,
            name=row.name,
            tenantId=row.tenant_id,
            userId=row.user_id,
            bookingId=row.booking_id,
            occurredAt=row.occurred_at,
            payload=row.payload or {},
            deliveryStatus=row.delivery_status,
            deliveryAttempts=row.delivery_attempts or 0,
            lastError=row.last_error,
        )
        for row in rows
    ]
