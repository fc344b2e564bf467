"""
In-memory log buffer and alert forwarding for webhook/event observability

RingBufferHandler keeps the most recent records for the admin webhook-logs view.
It is created and owned by the application factory, never a module global.
"""

import logging
import logging.handlers
import queue
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


def _level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


class RingBufferHandler(logging.Handler):
    """Bounded, append-only log buffer. Oldest entries are evicted at capacity."""

    def __init__(self, capacity: int = 1000, level: int = logging.INFO):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        super().__init__(level=level)
        self.capacity = capacity
        self._entries: deque = deque(maxlen=capacity)
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": _level_name(record.levelno),
                "eventType": getattr(record, "event_type", None) or record.name,
                "eventId": getattr(record, "event_id", None),
                "bookingId": getattr(record, "booking_id", None),
                "message": record.getMessage(),
                "logger": record.name,
            }
            if record.exc_info and record.exc_info[1] is not None:
                entry["error"] = str(record.exc_info[1])
            with self._entries_lock:
                self._entries.append(entry)
        except Exception:
            self.handleError(record)

    def __len__(self) -> int:
        return len(self._entries)

    def get_logs(
        self,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = 100,
    ) -> list[dict]:
        """Newest first, optionally filtered by level and event type"""
        with self._entries_lock:
            entries = list(self._entries)

        if level:
            entries = [e for e in entries if e["level"] == level]
        if event_type:
            entries = [e for e in entries if e["eventType"] == event_type]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return list(reversed(entries))

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()


class AlertHandler(logging.Handler):
    """Forwards warning/error records to Slack and/or Discord webhooks"""

    def __init__(
        self,
        slack_webhook_url: Optional[str] = None,
        discord_webhook_url: Optional[str] = None,
        level: int = logging.WARNING,
    ):
        super().__init__(level=level)
        self.slack_webhook_url = slack_webhook_url
        self.discord_webhook_url = discord_webhook_url

    def format_alert(self, record: logging.LogRecord) -> str:
        message = f"**Webhook {_level_name(record.levelno).upper()}**\n"
        message += f"**Event**: {getattr(record, 'event_type', None) or record.name}\n"
        message += f"**Message**: {record.getMessage()}\n"
        booking_id = getattr(record, "booking_id", None)
        if booking_id:
            message += f"**Booking ID**: {booking_id}\n"
        message += f"**Time**: {datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()}"
        return message

    def emit(self, record: logging.LogRecord) -> None:
        text = self.format_alert(record)
        try:
            with httpx.Client(timeout=5.0) as client:
                if self.slack_webhook_url:
                    client.post(
                        self.slack_webhook_url,
                        json={
                            "text": text,
                            "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
                        },
                    )
                if self.discord_webhook_url:
                    client.post(self.discord_webhook_url, json={"content": text})
        except Exception:
            self.handleError(record)


def start_alert_forwarding(
    target: logging.Logger, slack_webhook_url: Optional[str], discord_webhook_url: Optional[str]
) -> Optional[logging.handlers.QueueListener]:
    """
    Attach alert forwarding to ``target`` through a queue so network calls never
    run on the request path. Returns the started listener (stop it on shutdown).
    """
    if not slack_webhook_url and not discord_webhook_url:
        logger.warning("⚠️ Webhook notifications enabled but no Slack/Discord URL configured")
        return None

    alert_queue: queue.Queue = queue.Queue(-1)
    queue_handler = logging.handlers.QueueHandler(alert_queue)
    queue_handler.setLevel(logging.WARNING)
    target.addHandler(queue_handler)

    listener = logging.handlers.QueueListener(
        alert_queue, AlertHandler(slack_webhook_url, discord_webhook_url), respect_handler_level=True
    )
    listener.start()
    logger.info("🔔 Alert forwarding enabled for warnings and errors")
    return listener
