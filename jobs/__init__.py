"""
Durable job queue, worker pool and check scheduler.
"""

from jobs.store import ClaimedJob, JobStore
from jobs.worker import HandlerResult, WorkerPool
from jobs.handlers import MONITOR_CHECK, NOTIFICATION_DIGEST, JobHandlers
from jobs.scheduler import MonitorScheduler, is_due

__all__ = [
    "ClaimedJob",
    "JobStore",
    "HandlerResult",
    "WorkerPool",
    "JobHandlers",
    "MONITOR_CHECK",
    "NOTIFICATION_DIGEST",
    "MonitorScheduler",
    "is_due",
]
