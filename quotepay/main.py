"""FastAPI application entry point — wires everything together.

Usage:
    python -m quotepay.main

Starts the quote/payment API. Every external client is built in the
lifespan and closed on shutdown.
"""

from __future__ import annotations

import functools
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from quotepay.config import settings
from quotepay.db.engine import async_session_factory, db_lifespan
from quotepay.events.alerts import AlertEngine, post_to_webhook
from quotepay.events.audit import audit_on_event
from quotepay.events.bus import clear_subscribers, emit, start_event_system, stop_event_system, subscribe
from quotepay.payments.router import router as payments_router
from quotepay.quotes.router import router as quotes_router
from quotepay.schemas.events import EventType, SystemEvent
from quotepay.services import build_services

# ── Logging setup ────────────────────────────────────────────────────


def configure_logging(level: str, *, json_logs: bool) -> None:
    """Route stdlib and structlog output through one handler on stdout.

    Production gets JSON lines; development gets the console renderer.
    """
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    # Stripe's SDK logs every request body at INFO
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(settings.log_level, json_logs=settings.is_production)
logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting quotepay (env=%s)", settings.environment)

    # 1. Database
    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Event system + audit trail (global subscriber)
        subscribe(audit_on_event)
        await start_event_system()

        # 3. Service container: gateway, email providers, pipeline
        services = build_services(settings, async_session_factory)
        app.state.services = services

        # 4. Alerts: logged, optionally posted to a webhook
        alert_engine = AlertEngine()
        if settings.pipeline.alert_webhook_url and services.http_client is not None:
            alert_engine.set_send_fn(
                functools.partial(
                    post_to_webhook, services.http_client, settings.pipeline.alert_webhook_url
                )
            )
        else:
            logger.warning("ALERT_WEBHOOK_URL not set — alerts are logged only")
        subscribe(alert_engine.on_event, event_types=alert_engine.watched_types)

        await emit(SystemEvent(event_type=EventType.SYSTEM_STARTUP, source_module=__name__))

        try:
            yield
        finally:
            logger.info("Shutting down quotepay...")
            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module=__name__))

            await stop_event_system()
            clear_subscribers()
            logger.info("Event system stopped")

            await services.aclose()

    logger.info("quotepay shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="quotepay API",
    description="Quote-to-payment pipeline: pricing, Stripe checkout, quote documents, delivery",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(quotes_router)
app.include_router(payments_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "business": settings.branding.business_name,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "quotepay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
