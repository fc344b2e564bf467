"""
Automation hub client

POSTs normalized portal events to the configured automation endpoint (n8n)
with exponential backoff. The whole retry loop runs under a total timeout.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ...exceptions import DeliveryFailure
from .schemas import DomainEvent

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 5.0


@dataclass
class _DeliveryState:
    attempts: int = 0
    last_error: Optional[str] = None


class AutomationHubClient:
    """Client for the remote automation hub"""

    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        total_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.total_timeout = total_timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    async def deliver(self, event: DomainEvent) -> int:
        """
        Deliver one event.

        Returns:
            Number of attempts used

        Raises:
            DeliveryFailure: retries exhausted or total timeout reached
        """
        state = _DeliveryState()
        try:
            await asyncio.wait_for(self._deliver_with_retries(event, state), timeout=self.total_timeout)
        except asyncio.TimeoutError:
            raise DeliveryFailure(
                event.id, state.attempts, f"timed out after {self.total_timeout}s ({state.last_error})"
            ) from None
        return state.attempts

    async def _deliver_with_retries(self, event: DomainEvent, state: _DeliveryState) -> None:
        body = event.to_wire()
        async with httpx.AsyncClient(
            transport=self.transport, timeout=REQUEST_TIMEOUT_SECONDS
        ) as client:
            for attempt in range(1, self.max_attempts + 1):
                state.attempts = attempt
                try:
                    response = await client.post(self.url, json=body, headers=self._headers())
                    if response.is_success:
                        logger.info(
                            f"📤 Event {event.id} ({event.name.value}) delivered to automation hub",
                            extra={"event_type": "automation.notified", "event_id": event.id},
                        )
                        return
                    state.last_error = f"Automation hub returned {response.status_code}"
                except httpx.HTTPError as e:
                    state.last_error = f"{type(e).__name__}: {e}"

                logger.warning(
                    f"🔄 Automation hub delivery failed for event {event.id} "
                    f"(attempt {attempt}/{self.max_attempts}): {state.last_error}"
                )
                # Exponential backoff: base, 2*base, 4*base ...
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))

        raise DeliveryFailure(event.id, state.attempts, state.last_error)
