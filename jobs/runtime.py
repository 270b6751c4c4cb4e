"""
Wiring of the background side: stale-lock recovery, worker pool and scheduler.

Shared by the API process and the headless worker script.
"""

import logging
from datetime import timedelta
from typing import Optional

from core.config import settings
from jobs.handlers import JobHandlers
from jobs.scheduler import MonitorScheduler
from jobs.store import JobStore
from jobs.worker import WorkerPool

logger = logging.getLogger(__name__)


class BackgroundServices:
    """
    Scheduler + worker pool over one JobStore.

    Args:
        store: JobStore shared with anything else that enqueues in-process
        session_maker: Session factory for handlers and the scheduler
        handlers: JobHandlers (default collaborators when omitted)
    """

    def __init__(self, store: JobStore, session_maker, handlers: Optional[JobHandlers] = None):
        self.store = store
        self.handlers = handlers or JobHandlers(store, session_maker)
        self.pool = WorkerPool(
            store,
            self.handlers.as_dict(),
            concurrency=settings.WORKER_CONCURRENCY,
            poll_interval=settings.WORKER_POLL_INTERVAL_SECONDS,
        )
        self.scheduler = MonitorScheduler(store, session_maker)

    async def start(self):
        removed = await self.store.cleanup_stale_locks(timedelta(minutes=settings.STALE_LOCK_TIMEOUT_MINUTES))
        if removed:
            logger.info(f"Recovered {removed} stale lock(s) from a previous run")
        self.pool.start()
        self.scheduler.start()

    async def stop(self):
        self.scheduler.stop()
        await self.pool.stop()
