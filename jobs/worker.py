"""
Worker pool draining the durable job queue.

N asyncio tasks claim jobs independently and dispatch them by type. Handler
outcomes map onto the queue like this:

- HandlerResult "done" / "skipped": job done (skipped jobs are never retried)
- HandlerResult "failed": job failed
- raised exception: job failed with the error text, no automatic retry
- unknown job type: job failed
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from core.exceptions import UnknownJobTypeError
from models.base import JobEventStatus
from jobs.store import ClaimedJob, JobStore

logger = logging.getLogger(__name__)


class HandlerResult(BaseModel):
    """What a job handler reports back to the pool"""
    status: str = "done"  # "done" | "skipped" | "failed"
    message: Optional[str] = None
    error: Optional[str] = None
    monitor_id: Optional[int] = None


Handler = Callable[[ClaimedJob], Awaitable[HandlerResult]]

EVENT_STATUS = {
    "done": JobEventStatus.DONE,
    "skipped": JobEventStatus.SKIPPED,
    "failed": JobEventStatus.FAILED,
}


class WorkerPool:
    """
    Fixed-size pool of queue consumers.

    Args:
        store: JobStore to claim from
        handlers: Job type -> async handler
        concurrency: Number of worker tasks
        poll_interval: Idle sleep between empty claims, in seconds
        logger: Injectable logger
    """

    def __init__(
        self,
        store: JobStore,
        handlers: Dict[str, Handler],
        concurrency: int = 3,
        poll_interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.handlers = dict(handlers)
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)

        self._tasks: List[asyncio.Task] = []
        self._stopping = asyncio.Event()
        self._wakeup = asyncio.Event()
        store.add_enqueue_listener(self.notify)

    def notify(self):
        """Wake idle workers (called after an in-process enqueue)."""
        self._wakeup.set()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self):
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"job-worker-{i}")
            for i in range(self.concurrency)
        ]
        self.logger.info(f"Worker pool started with {self.concurrency} worker(s)")

    async def stop(self):
        """Let in-flight jobs finish, then stop all workers."""
        self._stopping.set()
        self._wakeup.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.logger.info("Worker pool stopped")

    async def _worker_loop(self, index: int):
        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except Exception as e:
                # store unavailable; keep the worker alive
                self.logger.exception(f"Worker {index}: queue error: {e}")
                processed = False

            if not processed:
                await self._idle()

    async def _idle(self):
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def run_once(self) -> bool:
        """
        Claim and run a single job.

        Returns:
            True when a job was processed, False when the queue was empty
        """
        job = await self.store.claim()
        if job is None:
            return False

        monitor_id = job.payload.get("monitor_id") if isinstance(job.payload, dict) else None
        await self.store.record_job_event(job.type, JobEventStatus.STARTED, job_id=job.id, monitor_id=monitor_id)

        handler = self.handlers.get(job.type)
        if handler is None:
            error = UnknownJobTypeError(f"Unknown job type: {job.type}", context={"job_id": job.id})
            self.logger.error(error.message)
            await self.store.fail(job.id, error.message)
            await self.store.record_job_event(
                job.type, JobEventStatus.FAILED, job_id=job.id, monitor_id=monitor_id, error=error.message
            )
            return True

        try:
            result = await handler(job)
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            self.logger.exception(f"Job {job.id} ({job.type}) failed: {message}")
            await self.store.fail(job.id, message)
            await self.store.record_job_event(
                job.type, JobEventStatus.FAILED, job_id=job.id, monitor_id=monitor_id, error=message
            )
            return True

        if result.monitor_id is not None:
            monitor_id = result.monitor_id

        if result.status == "failed":
            error = result.error or result.message or "handler reported failure"
            await self.store.fail(job.id, error, message=result.message)
        else:
            await self.store.complete(job.id, result.message)

        await self.store.record_job_event(
            job.type,
            EVENT_STATUS.get(result.status, JobEventStatus.DONE),
            job_id=job.id,
            monitor_id=monitor_id,
            message=result.message,
            error=result.error,
        )
        self.logger.debug(f"Job {job.id} ({job.type}) {result.status}: {result.message}")
        return True
