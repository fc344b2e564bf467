"""
Whop Webhook Router
Receives payment callbacks and hands them to the ingestor

Response codes: 401 bad signature, 400 bad JSON, 200 for everything else so the
provider does not retry events we already logged. Business-rule failures stay in
the log and the receipt row; the provider only sees the outcome.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...dependencies import get_event_emitter, get_webhook_secret
from ...exceptions import AuthenticationError, InvalidPayload
from ..events.emitter import EventEmitter
from .ingestor import WebhookIngestor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/whop")
async def handle_whop_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_event_emitter),
    secret: Optional[str] = Depends(get_webhook_secret),
):
    """
    Handle Whop payment webhook events

    Events handled:
    - payment.succeeded / payment_completed / membership.went_valid -> APPROVED, paid
    - payment.failed / membership.went_invalid -> PAYMENT_FAILED
    """
    if not secret:
        logger.error(
            "❌ WHOP_WEBHOOK_SECRET not configured",
            extra={"event_type": "webhook.config_error"},
        )
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    body = await request.body()
    signature = request.headers.get("x-whop-signature") or request.headers.get("whop-signature")
    event_type = request.headers.get("x-whop-event")

    try:
        result = WebhookIngestor(db, secret).ingest(body, signature, event_type)
    except AuthenticationError:
        raise HTTPException(status_code=401, detail="Invalid signature") from None
    except InvalidPayload as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except Exception as e:
        # Acknowledge anyway; the receipt/log entry is what operators act on
        logger.exception(
            f"❌ Webhook processing error: {e}",
            extra={"event_type": "webhook.processing_error"},
        )
        return {"received": True, "outcome": "error"}

    if result.event is not None:
        background_tasks.add_task(emitter.deliver, result.event)

    return {
        "received": True,
        "eventId": result.provider_event_id,
        "outcome": result.outcome.value,
    }
