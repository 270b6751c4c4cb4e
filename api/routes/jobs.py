"""
Job queue endpoints: audit trail and on-demand checks
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from api.dependencies import get_db, get_job_store
from jobs.handlers import MONITOR_CHECK
from jobs.store import JobStore
from models.base import JobEventStatus
from models.monitor import Monitor
from schemas.api import EnqueueCheckResponse, JobEventResponse, JobEventsResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Jobs"])


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or ""


@router.get("/jobs/events", response_model=JobEventsResponse)
async def list_job_events(
    request: Request,
    type: Optional[str] = Query(None, description="Job type, e.g. monitor.check"),
    status: Optional[JobEventStatus] = Query(None, description="Event status"),
    monitor_id: Optional[int] = Query(None, ge=1),
    job_id: Optional[int] = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=500, description="Number of events to return"),
    store: JobStore = Depends(get_job_store),
):
    """Most recent job events first, optionally filtered."""
    request_id = _request_id(request)
    logger.info(f"[{request_id}] GET /jobs/events type={type} status={status} monitor_id={monitor_id}")

    events = await store.list_job_events(
        job_type=type,
        status=status,
        monitor_id=monitor_id,
        job_id=job_id,
        limit=limit,
    )
    return JobEventsResponse(
        request_id=request_id,
        count=len(events),
        events=[JobEventResponse.from_orm(event) for event in events],
    )


@router.post("/monitors/{monitor_id}/check", response_model=EnqueueCheckResponse, status_code=202)
async def enqueue_monitor_check(
    monitor_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: JobStore = Depends(get_job_store),
):
    """
    Queue an immediate monitor.check job.

    Returns 404 for unknown monitors and 409 for inactive ones. A check that
    is already queued or running is reported as "already_queued".
    """
    request_id = _request_id(request)
    monitor = await db.get(Monitor, monitor_id)
    if monitor is None:
        raise HTTPException(status_code=404, detail=f"Monitor {monitor_id} not found")
    if not monitor.active:
        raise HTTPException(status_code=409, detail=f"Monitor {monitor_id} is inactive")

    job_id = await store.enqueue(MONITOR_CHECK, {"monitor_id": monitor_id}, dedupe_key=f"monitor:{monitor_id}")
    if job_id is None:
        return EnqueueCheckResponse(request_id=request_id, monitor_id=monitor_id, status="already_queued")

    await store.record_job_event(
        MONITOR_CHECK, JobEventStatus.QUEUED, job_id=job_id, monitor_id=monitor_id, message="requested via API"
    )
    logger.info(f"[{request_id}] Queued check job {job_id} for monitor {monitor_id}")
    return EnqueueCheckResponse(request_id=request_id, monitor_id=monitor_id, job_id=job_id, status="queued")
