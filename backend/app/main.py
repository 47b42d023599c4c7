"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap: ledger store and market engine
    construction, event bus and scheduler lifecycle, middleware/router
    wiring and error rendering.

Dependencies:
    - app.database
    - app.services.market_engine
    - app.services.event_bus
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import (
    ConnectionFailure,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from app.config import settings
import app.database as _db
from app.database import build_ledger_store, close_db, connect_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging
from app.services.event_bus import InMemoryEventBus
from app.services.event_handlers import register_event_handlers
from app.services.ledger_store import MongoLedgerStore
from app.services.market_engine import MarketEngine
from app.services.market_errors import ErrorCode, MarketError

logger = logging.getLogger("oddsmarket")
scheduler = AsyncIOScheduler()


def _register_jobs(engine: MarketEngine) -> None:
    from app.workers.reconciliation import run_reconciliation
    from app.workers.settlement_sweeper import run_settlement_sweep

    scheduler.add_job(
        run_settlement_sweep,
        "interval",
        id="settlement_sweep",
        args=[engine],
        minutes=settings.SETTLEMENT_SWEEP_MINUTES,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_reconciliation,
        "interval",
        id="settlement_reconciliation",
        args=[engine],
        minutes=settings.RECONCILIATION_MINUTES,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.LEDGER_BACKEND.strip().lower() == "mongo":
        await connect_db()
    store = build_ledger_store(settings)

    event_bus = None
    if settings.EVENT_BUS_ENABLED:
        event_bus = InMemoryEventBus(
            queue_maxsize=settings.EVENT_BUS_QUEUE_MAXSIZE,
            error_buffer_size=settings.EVENT_BUS_ERROR_BUFFER_SIZE,
        )
    engine = MarketEngine(store, settings, event_bus=event_bus)
    app.state.engine = engine

    if event_bus is not None:
        register_event_handlers(event_bus, engine)
        await event_bus.start()
        logger.info("Event bus enabled")
    else:
        logger.info("Event bus disabled via config; settlement runs inline")

    if settings.SCHEDULER_ENABLED:
        _register_jobs(engine)
        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.info("Background scheduler disabled via config")

    yield

    if event_bus is not None:
        await event_bus.stop()
    if scheduler.running:
        scheduler.shutdown(wait=False)
    await close_db()


app = FastAPI(
    title="Odds Market",
    description="Pari-mutuel betting market with a secondary bet marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from app.routers.admin import router as admin_router
from app.routers.bets import router as bets_router
from app.routers.events import router as events_router
from app.routers.users import router as users_router

app.include_router(bets_router)
app.include_router(events_router)
app.include_router(users_router)
app.include_router(admin_router)


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    if exc.code == ErrorCode.internal:
        logger.error("Internal market error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code.value},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean validation errors without leaking internal field paths."""
    errors = []
    for err in exc.errors():
        loc = err.get("loc", ())
        # Strip the "body" / "query" prefix for cleaner messages
        field = ".".join(str(l) for l in loc[1:]) if len(loc) > 1 else str(loc[-1]) if loc else "unknown"
        errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
    return JSONResponse(
        status_code=422,
        content={"detail": "Validation error.", "code": ErrorCode.invalid_argument.value, "errors": errors},
    )


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable.", "code": ErrorCode.aborted.value},
    )


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable.", "code": ErrorCode.aborted.value},
    )


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred.", "code": ErrorCode.internal.value},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred.", "code": ErrorCode.internal.value},
    )


@app.get("/health")
async def health(request: Request):
    """Health check: verifies the ledger store and reports event bus state."""
    engine: MarketEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        store_state = "uninitialized"
    elif isinstance(engine.store, MongoLedgerStore):
        try:
            result = await _db.db.command("ping")
            store_state = "connected" if result.get("ok") == 1.0 else "disconnected"
        except (ConnectionFailure, OperationFailure):
            store_state = "disconnected"
    else:
        store_state = "memory"

    bus = engine.event_bus if engine is not None else None
    return {
        "status": "healthy" if store_state in ("connected", "memory") else "degraded",
        "ledger_store": store_state,
        "event_bus": bus.stats() if bus is not None else None,
        "scheduler_running": scheduler.running,
    }
