"""
Whop Webhook Ingestor
Authenticates payment callbacks, routes them to a booking and drives the state machine

Steps:
1. Verify HMAC signature (reject on failure)
2. Parse JSON and extract the booking reference
3. Map provider event type to a target status
4. Skip provider events that were already processed (event log lookup)
5. Transition the booking; the status change event is logged in the same commit
"""

import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import (
    AuthenticationError,
    BookingNotFound,
    ConflictError,
    InvalidPayload,
    InvalidTransition,
    UnroutableEvent,
)
from ...webhook_security import verify_signature
from ..bookings.state_machine import BookingStateMachine
from ..bookings.statuses import PaymentProvider, TriggeredBy
from ..events.repository import EventLog
from ..events.schemas import DomainEvent, build_status_updated_event, webhook_event_id
from .extraction import WHOP_EVENT_OUTCOMES, extract_booking_id, extract_payment_reference
from .repository import WebhookReceiptRepository

logger = logging.getLogger(__name__)


class IngestOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNROUTABLE = "unroutable"
    IGNORED = "ignored"
    ERROR = "error"


@dataclass
class IngestResult:
    outcome: IngestOutcome
    provider_event_id: str
    event_type: str
    booking_id: Optional[str] = None
    event: Optional[DomainEvent] = None
    error: Optional[str] = None


class WebhookIngestor:
    """Terminates Whop payment callbacks"""

    provider = PaymentProvider.WHOP.value

    def __init__(
        self,
        db: Session,
        secret: str,
        event_log: Optional[EventLog] = None,
        state_machine: Optional[BookingStateMachine] = None,
    ):
        self.db = db
        self.secret = secret
        self.event_log = event_log or EventLog(db)
        self.state_machine = state_machine or BookingStateMachine(db)

    def ingest(
        self, raw_body: bytes, signature: Optional[str], event_type: Optional[str] = None
    ) -> IngestResult:
        """
        Process one provider callback.

        Raises:
            AuthenticationError: signature missing or wrong
            InvalidPayload: body is not a JSON object
        """
        if not verify_signature(raw_body, signature, self.secret):
            logger.error(
                "❌ Invalid Whop webhook signature",
                extra={"event_type": "webhook.invalid_signature"},
            )
            raise AuthenticationError("Invalid webhook signature")

        payload = self._parse(raw_body)
        event_type = event_type or payload.get("action") or payload.get("type") or "unknown"

        provider_event_id = payload.get("id")
        if provider_event_id:
            provider_event_id = str(provider_event_id)
        else:
            provider_event_id = f"generated-{uuid.uuid4()}"
            logger.warning(f"⚠️ Whop webhook without event id, replays cannot be detected ({event_type})")

        logger.info(
            f"📥 Whop webhook received: {event_type} ({provider_event_id})",
            extra={"event_type": "webhook.received", "event_id": provider_event_id},
        )

        result = self._process(payload, event_type, provider_event_id)
        self._record_receipt(result, payload)
        return result

    @staticmethod
    def _parse(raw_body: bytes) -> dict:
        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"❌ Invalid JSON payload: {e}")
            raise InvalidPayload("Invalid JSON") from e
        if not isinstance(payload, dict):
            raise InvalidPayload("Webhook body must be a JSON object")
        return payload

    def _process(self, payload: dict, event_type: str, provider_event_id: str) -> IngestResult:
        try:
            booking_id = self._booking_id(payload)
        except UnroutableEvent as e:
            logger.warning(
                f"⚠️ {e} ({event_type})",
                extra={"event_type": "webhook.missing_booking_id", "event_id": provider_event_id},
            )
            return IngestResult(IngestOutcome.UNROUTABLE, provider_event_id, event_type)

        outcome = WHOP_EVENT_OUTCOMES.get(event_type)
        if outcome is None:
            logger.info(
                f"ℹ️ Unhandled webhook event type: {event_type}",
                extra={"event_type": "webhook.unhandled_event", "booking_id": booking_id},
            )
            return IngestResult(IngestOutcome.IGNORED, provider_event_id, event_type, booking_id)

        event_id = webhook_event_id(self.provider, provider_event_id)
        if self.event_log.has(event_id):
            logger.info(f"🔄 Webhook {provider_event_id} already processed, skipping (idempotency)")
            return IngestResult(IngestOutcome.DUPLICATE, provider_event_id, event_type, booking_id)

        patch = {"payment_status": outcome.payment_status.value}
        payment_reference = extract_payment_reference(payload)
        if payment_reference:
            patch["payment_reference"] = payment_reference

        def build(booking, previous_status):
            return [
                build_status_updated_event(
                    booking, previous_status, TriggeredBy.WEBHOOK, event_id=event_id
                )
            ]

        try:
            transition = self.state_machine.transition(
                booking_id,
                outcome.status,
                actor=f"webhook:{self.provider}",
                note=f"{event_type} ({provider_event_id})",
                patch=patch,
                events=build,
            )
        except IntegrityError:
            # A concurrent replay committed the same event id first; this transition rolled back
            if not self.event_log.has(event_id):
                raise
            logger.info(f"🔄 Webhook {provider_event_id} processed concurrently, skipping (idempotency)")
            return IngestResult(IngestOutcome.DUPLICATE, provider_event_id, event_type, booking_id)
        except (BookingNotFound, InvalidTransition, ConflictError) as e:
            logger.error(
                f"❌ Webhook {provider_event_id} could not update booking {booking_id}: {e}",
                extra={"event_type": "webhook.processing_error", "booking_id": booking_id},
            )
            return IngestResult(
                IngestOutcome.ERROR, provider_event_id, event_type, booking_id, error=str(e)
            )

        event = transition.events[0] if transition.events else None
        return IngestResult(
            IngestOutcome.PROCESSED, provider_event_id, event_type, booking_id, event=event
        )

    @staticmethod
    def _booking_id(payload: dict) -> str:
        booking_id = extract_booking_id(payload)
        if not booking_id:
            raise UnroutableEvent("No booking ID found in webhook payload")
        return booking_id

    def _record_receipt(self, result: IngestResult, payload: dict) -> None:
        try:
            WebhookReceiptRepository.record(
                self.db,
                provider=self.provider,
                provider_event_id=result.provider_event_id,
                event_type=result.event_type,
                outcome=result.outcome.value,
                booking_id=result.booking_id,
                error=result.error,
                payload=payload,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record webhook receipt {result.provider_event_id}: {e}")
