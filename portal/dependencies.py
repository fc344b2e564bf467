"""
Shared FastAPI dependencies

Caller identity arrives in headers set by the authenticating gateway; session
management itself lives outside this service.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request

from . import config
from .domain.events.emitter import EventEmitter
from .log_buffer import RingBufferHandler
from .webhook_security import constant_time_compare, verify_api_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    user_id: str
    tenant_id: str

    @property
    def actor(self) -> str:
        return f"user:{self.user_id}"


def get_current_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_tenant_id: Optional[str] = Header(default=None),
) -> Caller:
    if not x_user_id or not x_tenant_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return Caller(user_id=x_user_id, tenant_id=x_tenant_id)


def get_event_emitter(request: Request) -> EventEmitter:
    return request.app.state.emitter


def get_log_buffer(request: Request) -> RingBufferHandler:
    return request.app.state.log_buffer


def get_webhook_secret() -> Optional[str]:
    return config.WHOP_WEBHOOK_SECRET


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return authorization.strip() or None


def require_internal_api_key(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
) -> None:
    """X-API-Key or Bearer token must match INTERNAL_API_KEY (presence only when unset)"""
    provided = x_api_key or _bearer_token(authorization)
    if not verify_api_key(provided, config.INTERNAL_API_KEY):
        logger.warning("🚫 Rejected internal request with missing or wrong API key")
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_admin(
    authorization: Optional[str] = Header(default=None),
    x_admin_id: Optional[str] = Header(default=None),
) -> str:
    """Admin bearer token check. Returns the actor string for history entries."""
    token = _bearer_token(authorization)
    if not config.ADMIN_API_KEY:
        logger.error("❌ ADMIN_API_KEY not configured, admin endpoints are disabled")
        raise HTTPException(status_code=503, detail="Admin API not configured")
    if not token or not constant_time_compare(token, config.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return f"admin:{x_admin_id or 'api'}"
