"""
Main FastAPI application for the Tournament Sync Engine.

The HTTP surface only enqueues and inspects; jobs run in the worker
process started by run_worker.py.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from tournament_sync.core.config import settings
from tournament_sync.core.logging import configure_logging, get_logger
from tournament_sync.core.middleware import CorrelationIdMiddleware
from tournament_sync.core.scheduler import AutomationScheduler
from tournament_sync.api.routes import sync

configure_logging(
    level=settings.LOG_LEVEL,
    json_output=settings.LOG_JSON
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events. The scheduler, if any, lives on app.state."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    app.state.scheduler = None
    if settings.API_RUN_SCHEDULER:
        scheduler = AutomationScheduler()
        await scheduler.start()
        app.state.scheduler = scheduler
        logger.info("Automation scheduler started (enqueue only)")

    try:
        yield
    finally:
        if app.state.scheduler is not None:
            await app.state.scheduler.stop()
            app.state.scheduler = None
            logger.info("Automation scheduler stopped")
        logger.info("Shutting down application")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Synchronizes tournament data from the tournament software API and resolves external teams",
    lifespan=lifespan
)

app.add_middleware(CorrelationIdMiddleware)

# Instrument before routes are added
instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

app.include_router(sync.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "sync": "/api/v1/sync",
            "metrics": "/metrics",
            "health": "/health"
        }
    }


@app.get("/health")
async def health_check():
    """Health check with database connectivity."""
    from tournament_sync.core.database import SessionLocal

    health_status = {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "components": {}
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["components"]["database"] = {"status": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["components"]["database"] = {"status": "error", "error": str(e)}
    finally:
        db.close()

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(status_code=status_code, content=health_status)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )
