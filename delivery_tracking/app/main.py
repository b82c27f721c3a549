"""
FastAPI Application Entry Point.

This is the main application file for the Delivery Tracking service.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from delivery_tracking.app.core.config import settings
from delivery_tracking.app.api.v1.router import router as api_v1_router
from delivery_tracking.app.core.dependencies import get_tracking_service
from delivery_tracking.app.core.observability import ObservabilityMiddleware, configure_logging
from delivery_tracking.app.db.session import engine, Base, AsyncSessionLocal
from delivery_tracking.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from delivery_tracking.app.services.stage_registry import stage_registry, seed_default_stages

# Import models to ensure they are registered with Base
from delivery_tracking.app.models.delivery_stage import DeliveryStage
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.models.status_history import StatusHistoryEntry
from delivery_tracking.app.models.notification import Notification
from delivery_tracking.app.models.failed_push import FailedCourierPush

logger = logging.getLogger("delivery_tracking.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Seeds the default stages when configured to.
    3. Loads the stage registry; the service does not start without one.
    4. On shutdown, waits for pending notifications and courier pushes.
    """
    configure_logging(settings.log_level)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        if settings.seed_stages_on_startup:
            created = await seed_default_stages(db)
            if created:
                logger.info("Seeded %d default delivery stages", created)
        await stage_registry.load(db)

    yield

    await get_tracking_service().shutdown()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Delivery status tracking for marketplace orders",
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
        "stages_loaded": stage_registry.size,
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
        "message": "Welcome to the Delivery Tracking API",
        "docs": "/docs",
        "health": "/health",
    }
