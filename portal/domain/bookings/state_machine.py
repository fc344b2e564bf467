"""
Booking state machine.

Legal status edges live in TRANSITIONS. Every real change goes through a
conditional update on the booking row (status must still be the one we read),
so a webhook replay racing a user cancellation cannot silently overwrite it.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from ...exceptions import BookingNotFound, ConflictError, InvalidTransition
from ...models import Booking, Service
from ..events.repository import EventLog
from ..events.schemas import DomainEvent
from .repository import BookingRepository
from .statuses import BookingStatus, PaymentProvider

logger = logging.getLogger(__name__)

# Builds the events for a committed change from (updated booking, previous status)
EventBuilder = Callable[[Booking, BookingStatus], Iterable[DomainEvent]]

TRANSITIONS: dict[BookingStatus, frozenset] = {
    BookingStatus.DRAFT: frozenset(
        {BookingStatus.PENDING, BookingStatus.PENDING_PAYMENT, BookingStatus.CANCELED}
    ),
    BookingStatus.PENDING: frozenset(
        {
            BookingStatus.APPROVED,
            BookingStatus.DECLINED,
            BookingStatus.CANCELED,
            BookingStatus.PENDING_ADMIN,
        }
    ),
    BookingStatus.PENDING_PAYMENT: frozenset(
        {BookingStatus.APPROVED, BookingStatus.PAYMENT_FAILED, BookingStatus.CANCELED}
    ),
    BookingStatus.PENDING_ADMIN: frozenset({BookingStatus.APPROVED, BookingStatus.DECLINED}),
    BookingStatus.APPROVED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELED: frozenset(),
    BookingStatus.DECLINED: frozenset(),
    BookingStatus.PAYMENT_FAILED: frozenset(
        {BookingStatus.PENDING_PAYMENT, BookingStatus.CANCELED}
    ),
}

assert set(TRANSITIONS) == set(BookingStatus), "Every booking status needs a transition entry"


def can_transition(current: BookingStatus, new: BookingStatus) -> bool:
    """True if ``current -> new`` is an edge of the table (self-transitions are not edges)"""
    return new in TRANSITIONS[current]


def initial_status(service: Service) -> BookingStatus:
    """
    Status a new booking starts in:
    online payment required -> PENDING_PAYMENT, manual approval -> PENDING,
    otherwise APPROVED.
    """
    provider = PaymentProvider(service.billing_provider or PaymentProvider.NONE)
    if provider.requires_online_payment:
        return BookingStatus.PENDING_PAYMENT
    if service.requires_approval:
        return BookingStatus.PENDING
    return BookingStatus.APPROVED


@dataclass(frozen=True)
class TransitionResult:
    booking: Booking
    previous_status: BookingStatus
    changed: bool
    events: tuple = ()

    @property
    def new_status(self) -> BookingStatus:
        return BookingStatus.parse(self.booking.status)


def _check_edge(current: BookingStatus, new: BookingStatus) -> bool:
    if current == new:
        return False
    if not can_transition(current, new):
        raise InvalidTransition(current, new)
    return True


def _check_cancel(current: BookingStatus, new: BookingStatus) -> bool:
    # Cancellation is allowed from any non-terminal state, table or not
    if current.is_terminal:
        raise InvalidTransition(
            current, new, reason=f"Cannot cancel a booking that is {current.client_value}"
        )
    return True


class BookingStateMachine:
    """Enforces legal status transitions and records history"""

    # One transparent retry after a lost conditional update
    MAX_ATTEMPTS = 2

    def __init__(self, db: Session, repository: Optional[BookingRepository] = None):
        self.db = db
        self.repo = repository or BookingRepository()

    def transition(
        self,
        booking_id: str,
        new_status: BookingStatus,
        actor: str,
        note: Optional[str] = None,
        patch: Optional[dict] = None,
        events: Optional[EventBuilder] = None,
    ) -> TransitionResult:
        """
        Move a booking to ``new_status``.

        Self-transitions succeed without touching history or building events.
        Illegal edges raise InvalidTransition and leave the booking unchanged.
        Events from ``events`` are written to the event log in the same commit.
        """
        return self._apply(
            booking_id, BookingStatus.parse(new_status), actor, note, patch, _check_edge, events
        )

    def cancel(
        self,
        booking_id: str,
        actor: str,
        note: Optional[str] = None,
        events: Optional[EventBuilder] = None,
    ) -> TransitionResult:
        """Client-initiated cancellation, legal from every non-terminal state"""
        return self._apply(booking_id, BookingStatus.CANCELED, actor, note, None, _check_cancel, events)

    def update_details(
        self,
        booking_id: str,
        patch: dict,
        actor: str,
        check: Callable[[BookingStatus], None],
        events: Optional[EventBuilder] = None,
    ) -> TransitionResult:
        """
        Change non-status fields, guarded by the same conditional update.

        ``check`` sees the current status and raises to refuse the change. No
        history entry is written since the status does not move.
        """

        def _check_details(current: BookingStatus, new: BookingStatus) -> bool:
            check(current)
            return True

        return self._apply(
            booking_id, None, actor, None, patch, _check_details, events, record_history=False
        )

    def _apply(
        self,
        booking_id: str,
        new_status: Optional[BookingStatus],
        actor: str,
        note: Optional[str],
        patch: Optional[dict],
        check: Callable[[BookingStatus, BookingStatus], bool],
        events: Optional[EventBuilder] = None,
        record_history: bool = True,
    ) -> TransitionResult:
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            booking = self.repo.get_booking(self.db, booking_id)
            if not booking:
                raise BookingNotFound(booking_id)

            current = BookingStatus.parse(booking.status)
            target = current if new_status is None else new_status
            if not check(current, target):
                logger.debug(f"ℹ️ Booking {booking_id} already {current.client_value}, nothing to do")
                return TransitionResult(booking=booking, previous_status=current, changed=False)

            values = dict(patch or {})
            values["status"] = target.value
            staged = []

            def stage(updated: Booking, previous: BookingStatus = current) -> None:
                if events is None:
                    return
                staged.extend(events(updated, previous))
                EventLog(self.db).stage_all(staged)

            try:
                updated = self.repo.conditional_update(
                    self.db,
                    booking_id,
                    current.value,
                    values,
                    actor=actor,
                    note=note,
                    before_commit=stage,
                    record_history=record_history,
                )
            except ConflictError:
                if attempt < self.MAX_ATTEMPTS:
                    logger.warning(
                        f"⚠️ Booking {booking_id} changed concurrently while moving "
                        f"{current.client_value} → {target.client_value}, re-reading"
                    )
                    continue
                logger.error(f"❌ Booking {booking_id} update lost twice to concurrent writers")
                raise

            logger.info(
                f"✅ Booking {booking_id} transitioned: {current.client_value} → {target.client_value} (by {actor})",
                extra={"event_type": "booking.status_changed", "booking_id": booking_id},
            )
            return TransitionResult(
                booking=updated, previous_status=current, changed=True, events=tuple(staged)
            )

        raise ConflictError(booking_id)  # pragma: no cover
