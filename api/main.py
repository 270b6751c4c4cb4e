"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, jobs
from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
import logging
from api.dependencies import job_store
from api.middleware import RequestContextMiddleware
from jobs.runtime import BackgroundServices

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Change Watch API",
    description="Operational API for the change-detection and delivery engine",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(jobs.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Change Watch API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if not settings.ENABLE_BACKGROUND_WORKERS:
        logger.info("Background workers disabled")
        return

    background = BackgroundServices(job_store, async_session_maker)
    await background.start()
    app.state.background = background
    app.state.worker_pool = background.pool


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Change Watch API")
    background = getattr(app.state, "background", None)
    if background is not None:
        await background.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Change Watch API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "job_events": "/jobs/events",
            "check_monitor": "/monitors/{monitor_id}/check"
        }
    }
