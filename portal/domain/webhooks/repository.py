"""Webhook receipt repository - audit trail of authenticated provider callbacks"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import WebhookReceipt, utcnow


class WebhookReceiptRepository:
    @staticmethod
    def record(
        db: Session,
        provider: str,
        provider_event_id: str,
        event_type: Optional[str],
        outcome: str,
        booking_id: Optional[str] = None,
        error: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> WebhookReceipt:
        receipt = WebhookReceipt(
            provider=provider,
            provider_event_id=provider_event_id,
            event_type=event_type,
            booking_id=booking_id,
            outcome=outcome,
            error=error,
            payload=payload,
            processed_at=utcnow(),
        )
        db.add(receipt)
        db.commit()
        return receipt

    @staticmethod
    def list_for_event(db: Session, provider: str, provider_event_id: str) -> list[WebhookReceipt]:
        return (
            db.query(WebhookReceipt)
            .filter(
                WebhookReceipt.provider == provider,
                WebhookReceipt.provider_event_id == provider_event_id,
            )
            .order_by(WebhookReceipt.id.asc())
            .all()
        )
