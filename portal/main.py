import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from . import config
from . import models  # noqa: F401 - register tables with Base
from .database import Base, SessionLocal
from .domain.bookings.router import router as bookings_router
from .domain.events.automation import AutomationHubClient
from .domain.events.emitter import EventEmitter
from .domain.events.router import router as internal_events_router
from .domain.webhooks.router import router as whop_webhooks_router
from .log_buffer import RingBufferHandler, start_alert_forwarding
from .routes.admin import router as admin_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# Logger whose records feed the admin log view and alert forwarding
PORTAL_LOGGER = "portal"

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    f"{config.FRONTEND_URL},http://localhost:5173",
).split(",")


def build_automation_hub(transport=None) -> AutomationHubClient:
    return AutomationHubClient(
        url=config.AUTOMATION_HUB_URL,
        api_key=config.AUTOMATION_HUB_API_KEY,
        max_attempts=config.EVENT_DELIVERY_MAX_ATTEMPTS,
        base_delay=config.EVENT_DELIVERY_BASE_DELAY_SECONDS,
        total_timeout=config.EVENT_DELIVERY_TIMEOUT_SECONDS,
        transport=transport,
    )


def create_app(
    session_factory: Callable[[], Session] = SessionLocal,
    hub: Optional[AutomationHubClient] = None,
    log_buffer: Optional[RingBufferHandler] = None,
) -> FastAPI:
    """
    Application factory. Collaborators (session factory, automation hub, log
    buffer) can be swapped by tests.
    """
    if log_buffer is None:
        log_buffer = RingBufferHandler(capacity=config.LOG_BUFFER_CAPACITY)
    emitter = EventEmitter(session_factory, hub or build_automation_hub())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting up...")
        bind = session_factory.kw.get("bind") if hasattr(session_factory, "kw") else None
        if bind is not None:
            try:
                Base.metadata.create_all(bind=bind, checkfirst=True)
                logger.info("Database tables created successfully")
            except Exception as e:
                # Ignore "already exists" errors from race conditions between workers
                error_msg = str(e)
                if "already exists" in error_msg or "duplicate key" in error_msg:
                    logger.info("Database tables already exist (created by another worker)")
                else:
                    logger.error(f"Failed to create database tables: {e}")

        portal_logger = logging.getLogger(PORTAL_LOGGER)
        if portal_logger.level == logging.NOTSET:
            portal_logger.setLevel(logging.INFO)
        portal_logger.addHandler(log_buffer)
        listener = None
        if config.ENABLE_WEBHOOK_NOTIFICATIONS:
            listener = start_alert_forwarding(
                portal_logger, config.SLACK_WEBHOOK_URL, config.DISCORD_WEBHOOK_URL
            )
        if not emitter.hub.configured:
            logger.warning("⚠️ AUTOMATION_HUB_URL not set, events will only be recorded locally")

        yield

        logger.info("Application shutting down...")
        portal_logger.removeHandler(log_buffer)
        if listener is not None:
            listener.stop()

    app = FastAPI(title="Booking Portal API", version="1.0.0", lifespan=lifespan)
    app.state.emitter = emitter
    app.state.log_buffer = log_buffer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )

    # Routes
    app.include_router(bookings_router)
    app.include_router(whop_webhooks_router)
    app.include_router(internal_events_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "automationHub": emitter.hub.configured}

    @app.get("/")
    async def root():
        return {"message": "Booking Portal API", "version": "1.0.0"}

    return app


app = create_app()
