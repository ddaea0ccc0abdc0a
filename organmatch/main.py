"""FastAPI application entry point — wires everything together.

Usage:
    python -m organmatch.main

Starts the admin matching API with the event system, the audit subscriber
and the verification trigger, then runs any matching passes still owed
to verified profiles.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from organmatch.admin.events import clear_subscriptions, emit, start_event_system, stop_event_system, subscribe
from organmatch.admin.web import router as admin_router
from organmatch.config import settings
from organmatch.db.engine import db_lifespan, ping_db
from organmatch.schemas.events import EventType, SystemEvent
from organmatch.security.audit import audit_on_event
from organmatch.verification.trigger import register_verification_trigger, sweep_missed_passes

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting organ matching service (env=%s)", settings.environment)

    # 1. Database
    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Event system
        await start_event_system()
        logger.info("Event system started")

        # 3. Audit logging — always active (global subscriber)
        subscribe(audit_on_event)
        logger.info("Audit logging subscriber registered")

        # 4. Verification → matching pass trigger
        register_verification_trigger()
        logger.info("Verification trigger registered")

        await emit(SystemEvent(event_type=EventType.SYSTEM_STARTUP, source_module="main"))

        # 5. Passes owed from before the last shutdown
        if settings.matching.sweep_on_startup:
            try:
                sweep = await sweep_missed_passes()
                logger.info("Startup pass sweep: %d owed, %d completed", sweep.owed, sweep.completed)
            except SQLAlchemyError:
                logger.exception("Startup pass sweep failed; retry via POST /admin/matching/verification/sweep")

        try:
            yield
        finally:
            logger.info("Shutting down organ matching service...")
            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await stop_event_system()
            clear_subscriptions()
            logger.info("Event system stopped")

    logger.info("Organ matching service shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Organ Matching API",
    description="Verification-triggered donor/recipient matching and review",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(admin_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Liveness plus database round-trip; 503 when the database is unreachable."""
    body: dict[str, Any] = {"environment": settings.environment}
    try:
        body["db_latency_ms"] = round(await ping_db(), 1)
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Health check: database unreachable: %s", exc)
        return JSONResponse({**body, "status": "degraded"}, status_code=503)
    return JSONResponse({**body, "status": "ok"})


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "organmatch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
