"""
FastAPI dependencies
"""

from core.database import async_session_maker, get_session as get_db
from jobs.store import JobStore

# Shared with the worker pool so API enqueues wake idle workers
job_store = JobStore(async_session_maker)


def get_job_store() -> JobStore:
    return job_store


__all__ = ["get_db", "get_job_store", "job_store"]
