"""FastAPI application entry point for the Exposure Stats service."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from exposure_stats.api import stats_router
from exposure_stats.consumers import get_consumer, start_consumer, stop_consumer
from exposure_stats.core.config import get_settings
from exposure_stats.core.database import close_db, init_db
from exposure_stats.core.observability import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    setup_observability,
)
from exposure_stats.services import get_aggregator, record_publish_handler

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    logger.info("Starting Exposure Stats", version=settings.app_version)

    await init_db()

    consumer = get_consumer()
    consumer.register_handler(record_publish_handler)
    await start_consumer()
    logger.info("Publish event consumer started")

    yield

    logger.info("Shutting down Exposure Stats")

    await stop_consumer()
    logger.info("Publish event consumer stopped")

    # Write out whatever is still pending before exit
    aggregator = get_aggregator()
    try:
        await aggregator.flush()
    except Exception as e:
        logger.error(
            "Final stats flush failed",
            error=str(e),
            records_lost=aggregator.stats["pending_records"],
        )
    finally:
        await close_db()
        logger.info("Database connections closed")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Hourly publish statistics for exposure notification health authorities",
    lifespan=lifespan,
)

# Set up observability (logging, tracing, metrics, error tracking)
setup_observability(app)

# Add request middleware (order matters: RequestID first, then logging)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

app.include_router(stats_router)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    consumer = get_consumer()
    return {
        "status": "healthy" if consumer.is_running else "degraded",
        "service": "exposure-stats",
        "consumer_running": consumer.is_running,
    }


@app.get("/stats")
async def service_stats() -> dict:
    """Get service statistics."""
    return {
        "service": "exposure-stats",
        "version": settings.app_version,
        "consumer": get_consumer().stats,
        "aggregator": get_aggregator().stats,
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Welcome to Exposure Stats", "version": settings.app_version}
