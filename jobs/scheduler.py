"""
Check scheduler.

Every tick enqueues a monitor.check job per due monitor and a
notification.digest job per pending digest group. The scheduler never runs
work itself; the worker pool does.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from jobs.handlers import MONITOR_CHECK, NOTIFICATION_DIGEST
from jobs.store import JobStore
from models.base import JobEventStatus
from monitoring.digest import list_pending_digest_groups
from monitoring.repository import MonitorRepository


def is_due(monitor, now: Optional[datetime] = None) -> bool:
    """True when the monitor was never checked or its interval has elapsed."""
    if monitor.last_checked_at is None:
        return True
    now = now or datetime.utcnow()
    return now - monitor.last_checked_at >= timedelta(minutes=monitor.interval_minutes)


class MonitorScheduler:
    """
    APScheduler-driven tick plus queue maintenance.

    Args:
        store: JobStore receiving the jobs
        session_maker: Session factory for reading monitors and digest items
        interval_seconds: Tick interval (settings.CHECK_INTERVAL_SECONDS)
        maintenance_interval_seconds: Maintenance sweep interval
        logger: Injectable logger
    """

    def __init__(
        self,
        store: JobStore,
        session_maker,
        interval_seconds: Optional[int] = None,
        maintenance_interval_seconds: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.session_maker = session_maker
        self.interval_seconds = interval_seconds or settings.CHECK_INTERVAL_SECONDS
        self.maintenance_interval_seconds = (
            maintenance_interval_seconds or settings.JOB_MAINTENANCE_INTERVAL_SECONDS
        )
        self.logger = logger or logging.getLogger(__name__)
        self.scheduler = AsyncIOScheduler()
        self._tick_lock = asyncio.Lock()

    # ========================================================================
    # Tick
    # ========================================================================

    async def tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Enqueue due checks and pending digests.

        Returns:
            {"skipped": bool, "monitors": int, "digests": int}
        """
        if self._tick_lock.locked():
            self.logger.info("Scheduler tick still running; skipping this one")
            return {"skipped": True, "monitors": 0, "digests": 0}

        async with self._tick_lock:
            now = now or datetime.utcnow()
            monitors = await self._enqueue_due_monitors(now)
            digests = await self._enqueue_due_digests(now)
            if monitors or digests:
                self.logger.info(f"Scheduler tick: {monitors} check(s), {digests} digest(s) enqueued")
            return {"skipped": False, "monitors": monitors, "digests": digests}

    async def _enqueue_due_monitors(self, now: datetime) -> int:
        async with self.session_maker() as session:
            monitors = await MonitorRepository(session).list_active_monitors()

        count = 0
        for monitor in monitors:
            if not is_due(monitor, now):
                continue
            try:
                job_id = await self.store.enqueue(
                    MONITOR_CHECK,
                    {"monitor_id": monitor.id},
                    dedupe_key=f"monitor:{monitor.id}",
                )
            except Exception as e:
                self.logger.error(f"Failed to enqueue check for monitor {monitor.id}: {e}")
                continue
            if job_id is None:
                continue
            count += 1
            await self.store.record_job_event(
                MONITOR_CHECK, JobEventStatus.QUEUED, job_id=job_id, monitor_id=monitor.id
            )
        return count

    async def _enqueue_due_digests(self, now: datetime) -> int:
        async with self.session_maker() as session:
            groups = await list_pending_digest_groups(session, now)

        count = 0
        for group in groups:
            digest_at = group.digest_at.isoformat()
            try:
                job_id = await self.store.enqueue(
                    NOTIFICATION_DIGEST,
                    {"monitor_id": group.monitor_id, "channel_id": group.channel_id, "digest_at": digest_at},
                    dedupe_key=f"{group.monitor_id}:{group.channel_id}:{digest_at}",
                )
            except Exception as e:
                self.logger.error(f"Failed to enqueue digest for monitor {group.monitor_id}: {e}")
                continue
            if job_id is None:
                continue
            count += 1
            await self.store.record_job_event(
                NOTIFICATION_DIGEST,
                JobEventStatus.QUEUED,
                job_id=job_id,
                monitor_id=group.monitor_id,
                message=f"channel {group.channel_id}, {len(group.item_ids)} item(s)",
            )
        return count

    async def run_tick(self):
        """APScheduler entry point; a failed tick is logged and the next one runs normally."""
        try:
            await self.tick()
        except Exception as e:
            self.logger.exception(f"Scheduler tick failed: {e}")

    # ========================================================================
    # Maintenance
    # ========================================================================

    async def maintenance(self) -> Dict[str, int]:
        requeued = await self.store.requeue_timed_out(timedelta(minutes=settings.JOB_TIMEOUT_MINUTES))
        removed = await self.store.remove_finished(
            timedelta(hours=settings.DONE_JOB_RETENTION_HOURS),
            timedelta(hours=settings.FAILED_JOB_RETENTION_HOURS),
        )
        return {"requeued": requeued, "removed": removed}

    async def run_maintenance(self):
        try:
            await self.maintenance()
        except Exception as e:
            self.logger.exception(f"Job maintenance failed: {e}")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self):
        """Start the tick (first run immediately) and the maintenance sweep."""
        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id="monitor_tick",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_maintenance,
            trigger=IntervalTrigger(seconds=self.maintenance_interval_seconds),
            id="job_maintenance",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        self.logger.info(f"Monitor scheduler started (every {self.interval_seconds}s)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.logger.info("Monitor scheduler stopped")
