"""
Job handlers for the worker pool.

- monitor.check {monitor_id}: one MonitorService.check_monitor run under the
  per-monitor lock
- notification.digest {monitor_id, channel_id, digest_at}: one weekly digest
  group under the per-group lock
"""

import logging
from typing import Any, Dict, Optional

from core.config import settings
from core.exceptions import InvalidJobPayloadError
from jobs.store import ClaimedJob, JobStore
from jobs.worker import Handler, HandlerResult
from monitoring.digest import parse_digest_payload, process_digest_job
from monitoring.fetcher import HTTPFetcher
from monitoring.notifier import NotificationService
from monitoring.plugins.registry import PluginRegistry, default_registry
from monitoring.service import EngineConfig, MonitorService
from monitoring.summarizer import HTTPSummarizer, SummaryService

logger = logging.getLogger(__name__)

MONITOR_CHECK = "monitor.check"
NOTIFICATION_DIGEST = "notification.digest"


def monitor_id_from_payload(payload: Any) -> int:
    if not isinstance(payload, dict) or payload.get("monitor_id") is None:
        raise InvalidJobPayloadError("monitor.check payload requires monitor_id", context={"payload": payload})
    try:
        return int(payload["monitor_id"])
    except (TypeError, ValueError) as e:
        raise InvalidJobPayloadError(
            "monitor_id must be an integer",
            context={"payload": payload},
            original_exception=e,
        )


def default_summary_service() -> SummaryService:
    summarizer = HTTPSummarizer() if settings.AI_API_KEY else None
    return SummaryService(summarizer=summarizer)


class JobHandlers:
    """
    Shared collaborators plus the handler coroutines.

    Each job gets its own session; collaborators are reused across jobs.
    """

    def __init__(
        self,
        store: JobStore,
        session_maker,
        fetcher=None,
        summary_service: Optional[SummaryService] = None,
        notification_service: Optional[NotificationService] = None,
        config: Optional[EngineConfig] = None,
        registry: Optional[PluginRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.session_maker = session_maker
        self.fetcher = fetcher or HTTPFetcher()
        self.summary_service = summary_service or default_summary_service()
        self.notification_service = notification_service or NotificationService(session_maker)
        self.config = config or EngineConfig.from_settings()
        self.registry = registry if registry is not None else default_registry()
        self.logger = logger or logging.getLogger(__name__)

    def as_dict(self) -> Dict[str, Handler]:
        return {
            MONITOR_CHECK: self.check_monitor,
            NOTIFICATION_DIGEST: self.send_digest,
        }

    def build_monitor_service(self, session) -> MonitorService:
        return MonitorService(
            session,
            fetcher=self.fetcher,
            summary_service=self.summary_service,
            notification_service=self.notification_service,
            config=self.config,
            registry=self.registry,
            logger=self.logger,
        )

    # ========================================================================
    # monitor.check
    # ========================================================================

    async def check_monitor(self, job: ClaimedJob) -> HandlerResult:
        monitor_id = monitor_id_from_payload(job.payload)
        lock_key = str(monitor_id)

        if not await self.store.acquire_lock(MONITOR_CHECK, lock_key, job.id):
            return HandlerResult(status="skipped", message="check already in progress", monitor_id=monitor_id)

        try:
            async with self.session_maker() as session:
                service = self.build_monitor_service(session)
                monitor = await service.repo.get_monitor(monitor_id)
                if monitor is None or not monitor.active:
                    return HandlerResult(
                        status="skipped",
                        message="monitor missing or inactive",
                        monitor_id=monitor_id,
                    )

                try:
                    result = await service.check_monitor(monitor)
                finally:
                    # stamped after every attempt so a failing source is not retried every tick
                    await service.repo.update_last_checked(monitor_id)

            if not result.success:
                return HandlerResult(status="failed", message=result.message, error=result.message, monitor_id=monitor_id)
            return HandlerResult(status="done", message=result.message, monitor_id=monitor_id)
        finally:
            await self.store.release_lock(MONITOR_CHECK, lock_key)

    # ========================================================================
    # notification.digest
    # ========================================================================

    async def send_digest(self, job: ClaimedJob) -> HandlerResult:
        monitor_id, channel_id, digest_at = parse_digest_payload(job.payload)
        lock_key = f"{monitor_id}:{channel_id}:{digest_at.isoformat()}"

        if not await self.store.acquire_lock(NOTIFICATION_DIGEST, lock_key, job.id):
            return HandlerResult(status="skipped", message="digest already in progress", monitor_id=monitor_id)

        try:
            async with self.session_maker() as session:
                service = self.build_monitor_service(session)
                result = await process_digest_job(
                    session,
                    job.payload,
                    self.notification_service,
                    plugin_resolver=service.resolve_plugin,
                )
        finally:
            await self.store.release_lock(NOTIFICATION_DIGEST, lock_key)

        status = "skipped" if result.status == "skipped" else "done"
        return HandlerResult(status=status, message=result.message, monitor_id=monitor_id)
