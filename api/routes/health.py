"""
Health check endpoint with database and job queue status
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db, get_job_store
from core.config import settings
from jobs.store import JobStore
from schemas.api import HealthCheckResponse
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: JobStore = Depends(get_job_store),
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Job counts by status
    - Whether the background worker pool is running
    """
    db_connected = False
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    jobs = {}
    if db_connected:
        try:
            jobs = await store.count_jobs_by_status()
        except Exception as e:
            logger.error(f"Failed to count jobs: {str(e)}")

    pool = getattr(request.app.state, "worker_pool", None)

    return HealthCheckResponse(
        database_connected=db_connected,
        workers_enabled=settings.ENABLE_BACKGROUND_WORKERS,
        workers_running=bool(pool and pool.running),
        jobs=jobs,
        timestamp=datetime.utcnow(),
    )
