"""Client booking router - FastAPI endpoints for the client portal"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...dependencies import Caller, get_current_caller, get_event_emitter
from ..events.emitter import EventEmitter
from .schemas import (
    AssetCreate,
    AssetResponse,
    BookingCreate,
    BookingDetailResponse,
    BookingReschedule,
    BookingResponse,
    CancelRequest,
    HistoryEntryResponse,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/client/bookings", tags=["Bookings"])


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db)


@router.post("", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: BookingCreate,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
    emitter: EventEmitter = Depends(get_event_emitter),
):
    """
    Create a booking; status depends on the service's payment/approval settings.

    Events are already in the event log when this returns; only the hub
    notification runs after the response.
    """
    booking, events = service.create_booking(data, caller)
    background_tasks.add_task(emitter.deliver_all, events)
    return BookingResponse.from_booking(booking)


@router.get("", response_model=list[BookingResponse])
async def list_bookings(
    status: Optional[str] = Query(None),
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    bookings = service.list_bookings(caller, status)
    return [BookingResponse.from_booking(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking(
    booking_id: str,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.get_booking(booking_id, caller)
    base = BookingResponse.from_booking(booking)
    return BookingDetailResponse(
        **base.model_dump(),
        history=[HistoryEntryResponse.from_entry(h) for h in booking.history],
    )


@router.get("/{booking_id}/history", response_model=list[HistoryEntryResponse])
async def get_booking_history(
    booking_id: str,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    """Status history, oldest first"""
    return [HistoryEntryResponse.from_entry(h) for h in service.get_history(booking_id, caller)]


@router.post("/{booking_id}/submit", response_model=BookingResponse)
async def submit_booking(
    booking_id: str,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
    emitter: EventEmitter = Depends(get_event_emitter),
):
    booking, events = service.submit_booking(booking_id, caller)
    background_tasks.add_task(emitter.deliver_all, events)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    background_tasks: BackgroundTasks,
    data: Optional[CancelRequest] = None,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
    emitter: EventEmitter = Depends(get_event_emitter),
):
    """Cancel a booking. Allowed from every non-terminal status."""
    reason = data.reason if data else None
    booking, events = service.cancel_booking(booking_id, caller, reason)
    background_tasks.add_task(emitter.deliver_all, events)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: str,
    data: BookingReschedule,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
    emitter: EventEmitter = Depends(get_event_emitter),
):
    booking, events = service.reschedule_booking(booking_id, data, caller)
    background_tasks.add_task(emitter.deliver_all, events)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/assets", response_model=AssetResponse, status_code=201)
async def add_booking_asset(
    booking_id: str,
    data: AssetCreate,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
    emitter: EventEmitter = Depends(get_event_emitter),
):
    """Register an uploaded file (the upload itself goes straight to storage)"""
    asset, events = service.record_asset(booking_id, data, caller)
    background_tasks.add_task(emitter.deliver_all, events)
    return AssetResponse.from_asset(asset)
