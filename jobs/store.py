"""
Durable job queue backed by the ``jobs`` table.

Job lifecycle: queued -> started -> done | failed

Guarantees:
- claim() is one conditional UPDATE ... RETURNING, so two workers can never
  both start the same job
- complete()/fail() only touch jobs that are still ``started``
- a job stuck in ``started`` past the timeout is requeued by maintenance
  (at-least-once; handlers are idempotent)

Every method opens its own short session and commits before returning, so
the store is safe to share between the scheduler and all workers.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update

from models.base import JobEventStatus, JobStatus
from models.job import Job, JobEvent, JobLock
from monitoring.repository import insert_ignore_duplicates

logger = logging.getLogger(__name__)


class ClaimedJob:
    """Snapshot of a job row taken at claim time."""

    def __init__(self, id: int, type: str, payload: Optional[Dict[str, Any]], attempts: int):
        self.id = id
        self.type = type
        self.payload = payload or {}
        self.attempts = attempts

    def __repr__(self):
        return f"<ClaimedJob(id={self.id}, type='{self.type}', attempts={self.attempts})>"


class JobStore:
    """
    Queue, lock and audit operations.

    Args:
        session_maker: async_sessionmaker used for every operation
    """

    def __init__(self, session_maker):
        self.session_maker = session_maker
        self._listeners = []

    def add_enqueue_listener(self, callback):
        """Call ``callback()`` after every successful enqueue (in-process wakeup)."""
        self._listeners.append(callback)

    # ========================================================================
    # Queue
    # ========================================================================

    async def enqueue(
        self,
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        dedupe_key: Optional[str] = None,
    ) -> Optional[int]:
        """
        Insert a queued job.

        Args:
            job_type: Handler key, e.g. "monitor.check"
            payload: JSON payload handed to the handler
            dedupe_key: When set, nothing is inserted while another queued or
                started job of the same type carries this key

        Returns:
            New job id, or None when deduplicated
        """
        async with self.session_maker() as session:
            if dedupe_key is not None:
                existing = await session.execute(
                    select(Job.id)
                    .where(
                        Job.type == job_type,
                        Job.dedupe_key == dedupe_key,
                        Job.status.in_([JobStatus.QUEUED, JobStatus.STARTED]),
                    )
                    .limit(1)
                )
                existing_id = existing.scalar_one_or_none()
                if existing_id is not None:
                    logger.debug(f"Job {job_type} [{dedupe_key}] already pending as {existing_id}")
                    return None

            job = Job(
                type=job_type,
                payload=payload or {},
                dedupe_key=dedupe_key,
                status=JobStatus.QUEUED,
                attempts=0,
                created_at=datetime.utcnow(),
            )
            session.add(job)
            await session.commit()
            job_id = job.id

        for callback in self._listeners:
            callback()
        return job_id

    async def claim(self, types: Optional[Sequence[str]] = None) -> Optional[ClaimedJob]:
        """Atomically move the oldest queued job to ``started``."""
        oldest = select(Job.id).where(Job.status == JobStatus.QUEUED)
        if types:
            oldest = oldest.where(Job.type.in_(list(types)))
        oldest = oldest.order_by(Job.id).limit(1).scalar_subquery()

        stmt = (
            update(Job)
            .where(Job.id == oldest, Job.status == JobStatus.QUEUED)
            .values(
                status=JobStatus.STARTED,
                started_at=datetime.utcnow(),
                attempts=Job.attempts + 1,
            )
            .returning(Job.id, Job.type, Job.payload, Job.attempts)
            .execution_options(synchronize_session=False)
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            row = result.first()
            await session.commit()

        if row is None:
            return None
        return ClaimedJob(id=row[0], type=row[1], payload=row[2], attempts=row[3])

    async def complete(self, job_id: int, message: Optional[str] = None) -> bool:
        return await self._finish(job_id, JobStatus.DONE, message=message)

    async def fail(self, job_id: int, error: str, message: Optional[str] = None) -> bool:
        return await self._finish(job_id, JobStatus.FAILED, message=message, error=error)

    async def _finish(
        self,
        job_id: int,
        status: JobStatus,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.STARTED)
                .values(status=status, message=message, error=error, finished_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if not result.rowcount:
            logger.warning(f"Job {job_id} was not in started state; {status.value} not recorded")
            return False
        return True

    async def get_job(self, job_id: int) -> Optional[Job]:
        async with self.session_maker() as session:
            return await session.get(Job, job_id)

    # ========================================================================
    # Maintenance
    # ========================================================================

    async def requeue_timed_out(self, timeout: timedelta) -> int:
        """Put jobs started before now - timeout back to queued."""
        cutoff = datetime.utcnow() - timeout
        async with self.session_maker() as session:
            result = await session.execute(
                update(Job)
                .where(Job.status == JobStatus.STARTED, Job.started_at < cutoff)
                .values(status=JobStatus.QUEUED, started_at=None, error="timed out; requeued")
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        count = result.rowcount or 0
        if count:
            logger.warning(f"Requeued {count} timed-out job(s)")
        return count

    async def remove_finished(self, done_age: timedelta, failed_age: timedelta) -> int:
        """Delete done jobs older than done_age and failed jobs older than failed_age."""
        now = datetime.utcnow()
        async with self.session_maker() as session:
            result = await session.execute(
                delete(Job)
                .where(
                    or_(
                        (Job.status == JobStatus.DONE) & (Job.finished_at < now - done_age),
                        (Job.status == JobStatus.FAILED) & (Job.finished_at < now - failed_age),
                    )
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        count = result.rowcount or 0
        if count:
            logger.info(f"Removed {count} finished job(s)")
        return count

    async def count_jobs_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        async with self.session_maker() as session:
            result = await session.execute(select(Job.status, func.count(Job.id)).group_by(Job.status))
            for status, count in result.all():
                counts[getattr(status, "value", status)] = count
        return counts

    # ========================================================================
    # Locks
    # ========================================================================

    async def acquire_lock(self, lock_type: str, key: str, job_id: Optional[int] = None) -> bool:
        """Take the (type, key) lock; False when somebody else holds it."""
        row = {
            "type": lock_type,
            "key": key,
            "job_id": str(job_id) if job_id is not None else None,
            "acquired_at": datetime.utcnow(),
        }
        async with self.session_maker() as session:
            inserted = await insert_ignore_duplicates(session, JobLock, [row], index_elements=["type", "key"])
            await session.commit()
        return inserted == 1

    async def release_lock(self, lock_type: str, key: str):
        async with self.session_maker() as session:
            await session.execute(delete(JobLock).where(JobLock.type == lock_type, JobLock.key == key))
            await session.commit()

    async def cleanup_stale_locks(self, timeout: timedelta) -> int:
        """Drop locks older than ``timeout`` left behind by a crashed process."""
        cutoff = datetime.utcnow() - timeout
        async with self.session_maker() as session:
            result = await session.execute(delete(JobLock).where(JobLock.acquired_at < cutoff))
            await session.commit()
        count = result.rowcount or 0
        if count:
            logger.warning(f"Removed {count} stale job lock(s)")
        return count

    # ========================================================================
    # Audit
    # ========================================================================

    async def record_job_event(
        self,
        job_type: str,
        status: JobEventStatus,
        job_id: Optional[int] = None,
        monitor_id: Optional[int] = None,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ):
        """Append a JobEvent. Never raises; a failed audit write is only logged."""
        try:
            async with self.session_maker() as session:
                session.add(
                    JobEvent(
                        job_id=str(job_id) if job_id is not None else None,
                        type=job_type,
                        status=status,
                        monitor_id=monitor_id,
                        message=message,
                        error=error,
                        created_at=datetime.utcnow(),
                    )
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to record job event ({job_type}/{status}): {e}")

    async def list_job_events(
        self,
        job_type: Optional[str] = None,
        status: Optional[JobEventStatus] = None,
        monitor_id: Optional[int] = None,
        job_id: Optional[int] = None,
        limit: int = 50,
    ) -> List[JobEvent]:
        """Most recent events first."""
        query = select(JobEvent)
        if job_type:
            query = query.where(JobEvent.type == job_type)
        if status:
            query = query.where(JobEvent.status == status)
        if monitor_id is not None:
            query = query.where(JobEvent.monitor_id == monitor_id)
        if job_id is not None:
            query = query.where(JobEvent.job_id == str(job_id))
        query = query.order_by(JobEvent.created_at.desc(), JobEvent.id.desc()).limit(limit)

        async with self.session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
