"""Event log repository - durable record of every emitted domain event"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ...models import PortalEvent, utcnow
from .schemas import DeliveryStatus, DomainEvent, EventName


class EventLog:
    """
    Durable event log keyed by event id.

    Also serves as the webhook de-dup store: events derived from provider
    callbacks carry a deterministic id (see webhook_event_id).
    """

    def __init__(self, db: Session):
        self.db = db

    def has(self, event_id: str) -> bool:
        return (
            self.db.query(PortalEvent.id).filter(PortalEvent.id == event_id).first() is not None
        )

    def stage(self, event: DomainEvent) -> PortalEvent:
        """Add the event to the current transaction; the caller commits"""
        row = PortalEvent(
            id=event.id,
            name=event.name.value,
            source=event.source,
            tenant_id=event.tenant_id,
            user_id=event.user_id,
            booking_id=event.booking_id,
            module_ids=list(event.module_ids) if event.module_ids else None,
            payload=event.payload,
            occurred_at=event.occurred_at,
            delivery_status=DeliveryStatus.PENDING.value,
        )
        self.db.add(row)
        return row

    def stage_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self.stage(event)

    def append(self, event: DomainEvent) -> PortalEvent:
        """Insert the event. Raises IntegrityError if the id was already recorded."""
        row = self.stage(event)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return row

    def get(self, event_id: str) -> Optional[PortalEvent]:
        return self.db.query(PortalEvent).filter(PortalEvent.id == event_id).first()

    def mark(
        self,
        event_id: str,
        status: DeliveryStatus,
        attempts: int = 0,
        error: Optional[str] = None,
    ) -> None:
        row = self.get(event_id)
        if not row:
            return
        row.delivery_status = status.value
        row.delivery_attempts = (row.delivery_attempts or 0) + attempts
        row.last_error = error
        if status == DeliveryStatus.DELIVERED:
            row.delivered_at = utcnow()
        self.db.commit()

    def list_events(
        self,
        booking_id: Optional[str] = None,
        delivery_status: Optional[str] = None,
        limit: int = 100,
    ) -> list[PortalEvent]:
        query = self.db.query(PortalEvent)
        if booking_id:
            query = query.filter(PortalEvent.booking_id == booking_id)
        if delivery_status:
            query = query.filter(PortalEvent.delivery_status == delivery_status)
        return query.order_by(PortalEvent.recorded_at.desc()).limit(limit).all()

    def list_undelivered(
        self, stale_before: Optional[datetime] = None, limit: int = 50
    ) -> list[PortalEvent]:
        """
        Events whose hub delivery failed, plus events still pending since before
        ``stale_before`` (their delivery task never ran, e.g. the process died).
        """
        condition = PortalEvent.delivery_status == DeliveryStatus.FAILED.value
        if stale_before is not None:
            condition = or_(
                condition,
                and_(
                    PortalEvent.delivery_status == DeliveryStatus.PENDING.value,
                    PortalEvent.recorded_at < stale_before,
                ),
            )
        return (
            self.db.query(PortalEvent)
            .filter(condition)
            .order_by(PortalEvent.recorded_at.asc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def to_domain(row: PortalEvent) -> DomainEvent:
        return DomainEvent(
            id=row.id,
            name=EventName(row.name),
            source=row.source,
            tenant_id=row.tenant_id,
            user_id=row.user_id,
            module_ids=tuple(row.module_ids) if row.module_ids else None,
            occurred_at=row.occurred_at,
            payload=row.payload or {},
        )
