"""Booking service - Business logic for client and admin booking operations"""

import logging
from datetime import timezone
from typing import Optional
from urllib.parse import urlencode

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...dependencies import Caller
from ...exceptions import BookingNotFound, ConflictError, InvalidTransition
from ...models import Asset, Booking, BookingStatusHistory, generate_id
from ..events.repository import EventLog
from ..events.schemas import (
    DomainEvent,
    build_asset_uploaded_event,
    build_booking_created_event,
    build_payment_completed_event,
    build_payment_intent_event,
    build_status_updated_event,
)
from .repository import BookingRepository
from .schemas import AssetCreate, BookingCreate, BookingReschedule
from .state_machine import BookingStateMachine, EventBuilder, TransitionResult, initial_status
from .statuses import (
    BookingStatus,
    PaymentProvider,
    PaymentStatus,
    TriggeredBy,
    module_for_category,
)

logger = logging.getLogger(__name__)

# Rescheduling makes no sense once work has started or the booking is closed
NON_RESCHEDULABLE = frozenset(
    {
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELED,
        BookingStatus.DECLINED,
    }
)


def _checkout_url(base_url: Optional[str], booking_id: str) -> Optional[str]:
    if not base_url:
        return None
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode({'bookingId': booking_id})}"


class BookingService:
    """Service layer for booking business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = BookingRepository()
        self.state_machine = BookingStateMachine(db, self.repo)

    def get_booking(self, booking_id: str, caller: Caller) -> Booking:
        booking = self.repo.get_booking_for_user(self.db, booking_id, caller.tenant_id, caller.user_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        return booking

    def list_bookings(self, caller: Caller, status: Optional[str] = None) -> list[Booking]:
        if status and status.lower() != "all":
            try:
                status = BookingStatus.parse(status).value
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e
        else:
            status = None
        return self.repo.list_bookings(self.db, caller.tenant_id, caller.user_id, status)

    def get_history(self, booking_id: str, caller: Caller) -> list[BookingStatusHistory]:
        booking = self.get_booking(booking_id, caller)
        return self.repo.get_history(self.db, booking.id)

    def create_booking(self, data: BookingCreate, caller: Caller) -> tuple[Booking, list[DomainEvent]]:
        """Create a booking in its initial status; its events commit with it"""
        service = self.repo.get_service(self.db, data.serviceId)
        if not service or (service.tenant_id and service.tenant_id != caller.tenant_id):
            raise HTTPException(status_code=404, detail="Service not found")

        provider = PaymentProvider(service.billing_provider or PaymentProvider.NONE)
        status = BookingStatus.DRAFT if data.draft else initial_status(service)
        booking_id = generate_id()

        logger.info(f"📥 Creating booking for user {caller.user_id} (service {service.id}) as {status.client_value}")

        events: list[DomainEvent] = []

        def stage_events(created: Booking) -> None:
            events.append(build_booking_created_event(created))
            if status == BookingStatus.PENDING_PAYMENT:
                events.append(build_payment_intent_event(created))
            EventLog(self.db).stage_all(events)

        booking = self.repo.create_booking(
            self.db,
            actor=caller.actor,
            note="Booking created",
            before_commit=stage_events,
            id=booking_id,
            tenant_id=caller.tenant_id,
            user_id=caller.user_id,
            service_id=service.id,
            module_id=service.module_id or module_for_category(service.category).value,
            status=status.value,
            payment_provider=provider.value,
            payment_status=(
                PaymentStatus.PENDING.value
                if status == BookingStatus.PENDING_PAYMENT
                else PaymentStatus.UNPAID.value
            ),
            payment_url=(
                _checkout_url(service.payment_url, booking_id)
                if provider.requires_online_payment
                else None
            ),
            price_cents=service.base_price_cents,
            currency=service.currency,
            scheduled_at=data.scheduledAt,
            start_at=data.startAt,
            end_at=data.endAt,
            notes=data.notes,
        )
        return booking, events

    def submit_booking(self, booking_id: str, caller: Caller) -> tuple[Booking, list[DomainEvent]]:
        """Move a draft into the status its service calls for"""
        booking = self.get_booking(booking_id, caller)
        if BookingStatus.parse(booking.status) != BookingStatus.DRAFT:
            raise HTTPException(status_code=409, detail="Only draft bookings can be submitted")

        target = initial_status(booking.service)
        if target == BookingStatus.APPROVED:
            # No edge draft -> approved; auto-approval goes through pending
            submitted = self._transition(
                booking.id,
                BookingStatus.PENDING,
                caller.actor,
                "Submitted",
                events=self._status_events(TriggeredBy.USER),
            )
            approved = self._transition(
                booking.id,
                BookingStatus.APPROVED,
                "system",
                "Auto-approved",
                events=self._status_events(TriggeredBy.SYSTEM),
            )
            return approved.booking, [*submitted.events, *approved.events]

        def build(updated: Booking, previous: BookingStatus) -> list[DomainEvent]:
            built = [build_status_updated_event(updated, previous, TriggeredBy.USER)]
            if target == BookingStatus.PENDING_PAYMENT:
                built.append(build_payment_intent_event(updated))
            return built

        patch = {}
        if target == BookingStatus.PENDING_PAYMENT:
            patch["payment_status"] = PaymentStatus.PENDING.value
        result = self._transition(booking.id, target, caller.actor, "Submitted", patch, events=build)
        return result.booking, list(result.events)

    def cancel_booking(
        self, booking_id: str, caller: Caller, reason: Optional[str] = None
    ) -> tuple[Booking, list[DomainEvent]]:
        booking = self.get_booking(booking_id, caller)
        try:
            result = self.state_machine.cancel(
                booking.id,
                actor=caller.actor,
                note=reason,
                events=self._status_events(TriggeredBy.USER, note=reason),
            )
        except (InvalidTransition, ConflictError) as e:
            logger.warning(f"⚠️ Cancel rejected for booking {booking_id}: {e}")
            raise HTTPException(status_code=409, detail=str(e)) from e
        return result.booking, list(result.events)

    def reschedule_booking(
        self, booking_id: str, data: BookingReschedule, caller: Caller
    ) -> tuple[Booking, list[DomainEvent]]:
        """
        Move the booking's time window.

        Goes through the same conditional update as a transition, so it cannot
        overwrite a concurrent cancellation. The status stays put, so no history
        entry is added; a ``booking.status_updated`` event with a "Rescheduled"
        note carries the new window to automation.
        """
        booking = self.get_booking(booking_id, caller)

        updates = {}
        if data.scheduledAt is not None:
            updates["scheduled_at"] = data.scheduledAt
        if data.startAt is not None:
            updates["start_at"] = data.startAt
        if data.endAt is not None:
            updates["end_at"] = data.endAt

        start = updates.get("start_at", booking.start_at)
        end = updates.get("end_at", booking.end_at)
        if start and end and _as_utc(end) <= _as_utc(start):
            raise HTTPException(status_code=400, detail="endAt must be after startAt")

        def ensure_reschedulable(current: BookingStatus) -> None:
            if current in NON_RESCHEDULABLE:
                raise InvalidTransition(
                    current, current, reason=f"Cannot reschedule a booking that is {current.client_value}"
                )

        def build(updated: Booking, previous: BookingStatus) -> list[DomainEvent]:
            window = {
                "scheduledAt": _isoformat(updated.scheduled_at),
                "startAt": _isoformat(updated.start_at),
                "endAt": _isoformat(updated.end_at),
            }
            return [
                build_status_updated_event(
                    updated, previous, TriggeredBy.USER, note="Rescheduled", extra=window
                )
            ]

        logger.info(f"📅 Rescheduling booking {booking_id}")
        try:
            result = self.state_machine.update_details(
                booking.id, updates, caller.actor, ensure_reschedulable, events=build
            )
        except (InvalidTransition, ConflictError) as e:
            logger.warning(f"⚠️ Reschedule rejected for booking {booking_id}: {e}")
            raise HTTPException(status_code=409, detail=str(e)) from e
        return result.booking, list(result.events)

    def admin_transition(
        self, booking_id: str, new_status: str, actor: str, note: Optional[str] = None
    ) -> tuple[Booking, list[DomainEvent]]:
        """Generic transition for operators; follows the transition table strictly"""
        target = BookingStatus.parse(new_status)
        result = self._transition(
            booking_id, target, actor, note, events=self._status_events(TriggeredBy.ADMIN, note=note)
        )
        return result.booking, list(result.events)

    def record_manual_payment(
        self, booking_id: str, actor: str, reference: Optional[str] = None, note: Optional[str] = None
    ) -> tuple[Booking, list[DomainEvent]]:
        """Mark an offline payment as received and approve the booking"""
        patch = {
            "payment_status": PaymentStatus.PAID.value,
            "payment_provider": PaymentProvider.MANUAL.value,
        }
        if reference:
            patch["payment_reference"] = reference

        def build(updated: Booking, previous: BookingStatus) -> list[DomainEvent]:
            return [
                build_payment_completed_event(
                    booking_id=updated.id,
                    tenant_id=updated.tenant_id,
                    amount_cents=updated.price_cents,
                    currency=updated.currency,
                    billing_provider=PaymentProvider.MANUAL.value,
                    user_id=updated.user_id,
                    payment_reference=reference,
                ),
                build_status_updated_event(updated, previous, TriggeredBy.ADMIN, note=note),
            ]

        result = self._transition(
            booking_id,
            BookingStatus.APPROVED,
            actor,
            note or "Manual payment received",
            patch,
            events=build,
        )
        return result.booking, list(result.events)

    def record_asset(
        self, booking_id: str, data: AssetCreate, caller: Caller
    ) -> tuple[Asset, list[DomainEvent]]:
        booking = self.get_booking(booking_id, caller)
        module_ids = [booking.module_id] if booking.module_id else None
        events: list[DomainEvent] = []

        def stage_events(asset: Asset) -> None:
            events.append(build_asset_uploaded_event(asset, module_ids=module_ids))
            EventLog(self.db).stage_all(events)

        asset = self.repo.create_asset(
            self.db,
            before_commit=stage_events,
            tenant_id=booking.tenant_id,
            booking_id=booking.id,
            user_id=caller.user_id,
            file_name=data.fileName,
            file_type=data.fileType,
            storage_path=data.storagePath,
            size=data.size,
            mime_type=data.mimeType,
        )
        return asset, events

    def _transition(
        self,
        booking_id: str,
        target: BookingStatus,
        actor: str,
        note: Optional[str] = None,
        patch: Optional[dict] = None,
        events: Optional[EventBuilder] = None,
    ) -> TransitionResult:
        try:
            return self.state_machine.transition(
                booking_id, target, actor=actor, note=note, patch=patch, events=events
            )
        except BookingNotFound as e:
            raise HTTPException(status_code=404, detail="Booking not found") from e
        except (InvalidTransition, ConflictError) as e:
            logger.warning(f"⚠️ Transition rejected for booking {booking_id}: {e}")
            raise HTTPException(status_code=409, detail=str(e)) from e

    @staticmethod
    def _status_events(triggered_by: TriggeredBy, note: Optional[str] = None) -> EventBuilder:
        def build(booking: Booking, previous: BookingStatus) -> list[DomainEvent]:
            return [build_status_updated_event(booking, previous, triggered_by, note=note)]

        return build


def _as_utc(value):
    """Stored timestamps are naive UTC; aware values are converted before comparing"""
    if value.tzinfo:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None
