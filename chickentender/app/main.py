"""
FastAPI Application Entry Point.

This is the main application file for the Chicken Tender backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from chickentender.app.core.config import settings
from chickentender.app.api.v1.router import router as api_v1_router
from chickentender.app.core.observability import ObservabilityMiddleware, configure_logging
from chickentender.app.core.redis_client import ping_redis, close_redis
from chickentender.app.db.session import engine, Base, AsyncSessionLocal
from chickentender.app.db.migrations import upgrade_database
from chickentender.app.domain.orders.order_service import ORDER_JOB_HANDLERS
from chickentender.app.domain.scheduling.scheduler import SchedulerWorker
from chickentender.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from chickentender.app.models.user import User
from chickentender.app.models.audit_log import AuditLog
from chickentender.app.models.order import Order, OrderParticipant
from chickentender.app.models.ledger_entry import LedgerEntry, LedgerEntryLine
from chickentender.app.models.scheduled_job import ScheduledJob
from chickentender.app.models.dlq import DeadLetterQueue
from chickentender.app.models.notification import Notification
from chickentender.app.models.schema_version import SchemaVersion

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables and upgrades stored data to the current
       schema version before any request is served.
    2. Starts the scheduler worker that fires order transitions, and stops
       it on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        await upgrade_database(db)

    worker = None
    if settings.scheduler_enabled:
        worker = SchedulerWorker(AsyncSessionLocal, ORDER_JOB_HANDLERS)
        worker.start()

    yield

    if worker is not None:
        await worker.stop()
    await engine.dispose()
    await close_redis()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Group food orders settled in coins",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Chicken Tender API",
        "docs": "/docs",
        "health": "/health",
    }
