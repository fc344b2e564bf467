"""
Event Emitter

Publishes domain events to two sinks, attempted independently:
1. the durable event log (system of record, written first)
2. the remote automation hub (best-effort, retried)

Events produced by a booking change are staged in the same transaction as the
change itself; deliver() then only notifies the hub about rows already logged.
emit() writes the log row and notifies in one go.

Neither raises: user-facing flows must not be blocked by automation failures.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import DeliveryFailure
from ...models import utcnow
from .automation import AutomationHubClient
from .repository import EventLog
from .schemas import DeliveryStatus, DomainEvent

logger = logging.getLogger(__name__)

# Pending rows older than this lost their delivery task and are picked up by redelivery
STALE_PENDING_AFTER = timedelta(minutes=5)


@dataclass
class EmitReport:
    event_id: str
    logged: bool = False
    delivered: bool = False
    duplicate: bool = False
    attempts: int = 0
    error: Optional[str] = None


class EventEmitter:
    """Write-ahead event publisher. Uses its own short-lived sessions."""

    def __init__(self, session_factory: Callable[[], Session], hub: AutomationHubClient):
        self.session_factory = session_factory
        self.hub = hub

    async def emit(self, event: DomainEvent) -> EmitReport:
        report = EmitReport(event_id=event.id)
        try:
            self._record(event, report)
            if report.duplicate:
                return report
            await self._notify(event, report)
        except Exception as e:
            # Never surface to the caller
            report.error = str(e)
            logger.exception(f"❌ Unexpected error emitting event {event.id}: {e}")
        return report

    async def deliver(self, event: DomainEvent) -> EmitReport:
        """Notify the hub about an event whose log row is already committed"""
        report = EmitReport(event_id=event.id, logged=True)
        try:
            await self._notify(event, report)
        except Exception as e:
            report.error = str(e)
            logger.exception(f"❌ Unexpected error delivering event {event.id}: {e}")
        return report

    async def deliver_all(self, events: Iterable[DomainEvent]) -> list[EmitReport]:
        return [await self.deliver(event) for event in events]

    def _record(self, event: DomainEvent, report: EmitReport) -> None:
        db = None
        try:
            db = self.session_factory()
            EventLog(db).append(event)
            report.logged = True
            logger.info(
                f"📝 Event {event.id} ({event.name.value}) recorded",
                extra={
                    "event_type": event.name.value,
                    "event_id": event.id,
                    "booking_id": event.booking_id,
                },
            )
        except IntegrityError:
            report.duplicate = True
            logger.info(f"🔄 Event {event.id} already recorded, skipping delivery")
        except Exception as e:
            # Operational alert: the business transition is already committed
            report.error = f"event log write failed: {e}"
            logger.error(
                f"❌ Failed to write event {event.id} ({event.name.value}) to event log: {e}",
                extra={"event_type": "event_log.write_failed", "event_id": event.id},
            )
        finally:
            if db is not None:
                db.close()

    async def _notify(self, event: DomainEvent, report: EmitReport) -> None:
        if not self.hub.configured:
            logger.warning(
                "⚠️ Automation hub URL not configured, skipping remote notification",
                extra={"event_type": "automation.skipped", "event_id": event.id},
            )
            self._mark(event.id, report, DeliveryStatus.SKIPPED)
            return

        try:
            report.attempts = await self.hub.deliver(event)
            report.delivered = True
            self._mark(event.id, report, DeliveryStatus.DELIVERED)
        except DeliveryFailure as e:
            report.attempts = e.attempts
            report.error = e.last_error
            logger.error(
                f"❌ {e}",
                extra={
                    "event_type": "automation.failed",
                    "event_id": event.id,
                    "booking_id": event.booking_id,
                },
            )
            self._mark(event.id, report, DeliveryStatus.FAILED)

    def _mark(self, event_id: str, report: EmitReport, status: DeliveryStatus) -> None:
        if not report.logged:
            return
        db = self.session_factory()
        try:
            EventLog(db).mark(event_id, status, attempts=report.attempts, error=report.error)
        except Exception as e:
            logger.error(f"❌ Failed to record delivery status for event {event_id}: {e}")
        finally:
            db.close()

    async def redeliver_failed(self, limit: int = 50) -> int:
        """Retry remote delivery for failed events and for stale pending ones"""
        stale_before = utcnow() - STALE_PENDING_AFTER
        db = self.session_factory()
        try:
            rows = EventLog(db).list_undelivered(stale_before=stale_before, limit=limit)
            events = [EventLog.to_domain(row) for row in rows]
        finally:
            db.close()

        delivered = 0
        for event in events:
            report = await self.deliver(event)
            if report.delivered:
                delivered += 1

        if events:
            logger.info(f"📊 Redelivery run: {delivered}/{len(events)} events delivered")
        return delivered
