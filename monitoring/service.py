"""
Monitor engine.

MonitorService.check_monitor runs one check as a linear state machine with
early exits:

    fetch -> transform (plugin or HTML conversion) -> hash -> compare with
    latest snapshot -> diff -> summarize -> persist change -> gate ->
    dispatch (immediate / weekly digest) -> retention

Versioned plugin output is handed to ReleaseReconciler instead.

Only fetch and transform failures (and unexpected exceptions) produce
``success=False``; every "nothing changed" outcome is a success with
``has_change=False``.
"""

import asyncio
import logging
from typing import Optional

from pydantic import BaseModel

from core.config import settings
from core.exceptions import PluginError
from models.base import ContentType
from models.change import Change
from models.snapshot import Snapshot
from monitoring.content import HTMLToMarkdown, hash_content, looks_like_html
from monitoring.differ import LineDiffer
from monitoring.digest import enqueue_weekly_digest, partition_channels
from monitoring.plugins.registry import PluginRegistry, Resolved, default_registry
from monitoring.policy import should_notify
from monitoring.releases import ReleaseReconciler
from monitoring.repository import MonitorRepository
from monitoring.retention import cleanup_monitor_history
from schemas.plugin import ContentResult, ReleasesResult, SkipResult
from schemas.results import CheckResult, SummaryResult


class EngineConfig(BaseModel):
    """Engine toggles, normally built from settings."""
    notify_on_first_snapshot: bool = False
    keep_snapshots: int = 20
    keep_changes: int = 20
    enable_plugin_auto_detect: bool = False

    @classmethod
    def from_settings(cls) -> "EngineConfig":
        return cls(
            notify_on_first_snapshot=settings.NOTIFY_ON_FIRST_SNAPSHOT,
            keep_snapshots=settings.RETENTION_SNAPSHOTS,
            keep_changes=settings.RETENTION_CHANGES,
            enable_plugin_auto_detect=settings.EXAMPLE_PLUGINS_ENABLED,
        )


class MonitorService:
    """
    Per-check engine bound to one database session.

    Args:
        session: AsyncSession owned by the caller (one per job)
        fetcher: Fetcher collaborator (``check(monitor) -> FetchResult``)
        summary_service: SummaryService collaborator
        notification_service: NotificationService collaborator
        converter: HTML converter (HTMLToMarkdown by default)
        differ: Differ (LineDiffer by default)
        config: EngineConfig (from settings by default)
        registry: PluginRegistry (shipped plugins by default)
        logger: Injectable logger
    """

    def __init__(
        self,
        session,
        fetcher,
        summary_service,
        notification_service,
        converter=None,
        differ=None,
        config: Optional[EngineConfig] = None,
        registry: Optional[PluginRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.repo = MonitorRepository(session)
        self.fetcher = fetcher
        self.summary_service = summary_service
        self.notification_service = notification_service
        self.converter = converter or HTMLToMarkdown()
        self.differ = differ or LineDiffer()
        self.config = config or EngineConfig.from_settings()
        self.registry = registry if registry is not None else default_registry()
        self.logger = logger or logging.getLogger(__name__)

    def resolve_plugin(self, monitor) -> Resolved:
        return self.registry.resolve(monitor, self.config.enable_plugin_auto_detect)

    # ========================================================================
    # Check
    # ========================================================================

    async def check_monitor(self, monitor) -> CheckResult:
        """
        Run one check of a monitor.

        Returns:
            CheckResult(success, message, has_change, change_ids)
        """
        try:
            return await self._check(monitor)
        except Exception as e:
            self.logger.exception(f"{monitor.name}: error: {e}")
            await self.session.rollback()
            message = getattr(e, "message", None) or str(e) or "Unknown error"
            return CheckResult(success=False, message=message)

    async def _check(self, monitor) -> CheckResult:
        # ----------------------------------------------------------------
        # Fetch
        # ----------------------------------------------------------------
        fetched = await self.fetcher.check(monitor)
        if not fetched.success:
            self.logger.error(f"{monitor.name}: error: {fetched.error}")
            return CheckResult(success=False, message=fetched.error or "Failed to fetch")
        if not fetched.content:
            return CheckResult(success=False, message="No content retrieved")

        # ----------------------------------------------------------------
        # Transform
        # ----------------------------------------------------------------
        content = fetched.content
        plugin, options = self.resolve_plugin(monitor)

        if plugin is not None:
            try:
                transformed = await asyncio.to_thread(
                    plugin.transform, content, fetched.content_type, monitor, options
                )
            except Exception as e:
                raise PluginError(
                    f"Plugin '{plugin.id}' failed: {e}",
                    context={"monitor_id": monitor.id, "plugin_id": plugin.id},
                    original_exception=e,
                )

            if isinstance(transformed, SkipResult):
                reason = f" ({transformed.reason})" if transformed.reason else ""
                self.logger.info(f"{monitor.name}: skipped by plugin{reason}")
                await self.repo.update_last_checked(monitor.id)
                return CheckResult(success=True, message="Skipped by plugin")

            if isinstance(transformed, ReleasesResult):
                reconciler = ReleaseReconciler(
                    self.session,
                    self.differ,
                    self.summary_service,
                    self.notification_service,
                    self.config,
                    logger=self.logger,
                )
                return await reconciler.reconcile(monitor, transformed.releases, plugin, options)

            if isinstance(transformed, ContentResult):
                content = transformed.content_md
        elif monitor.content_type == ContentType.WEBPAGE and looks_like_html(content, fetched.content_type):
            content = await asyncio.to_thread(self.converter.convert, content)

        # ----------------------------------------------------------------
        # Hash and compare
        # ----------------------------------------------------------------
        content_hash = hash_content(content)
        latest: Optional[Snapshot] = await self.repo.get_latest_snapshot(monitor.id)

        if latest is not None and latest.content_hash == content_hash:
            await self.repo.update_last_checked(monitor.id)
            return CheckResult(success=True, message="No changes detected")

        snapshot = await self.repo.create_snapshot(monitor.id, content_hash, content)

        if latest is None:
            return await self._first_snapshot(monitor, snapshot, content, plugin, options)
        return await self._changed(monitor, latest, snapshot, content, plugin, options)

    async def _changed(self, monitor, latest: Snapshot, snapshot: Snapshot, content: str, plugin, options) -> CheckResult:
        diff = self.differ.generate_diff(latest.content_md, content, monitor)
        if not diff.changes:
            await self.repo.update_last_checked(monitor.id)
            await self._cleanup(monitor)
            return CheckResult(success=True, message="No changes detected")

        summary = await self.summary_service.generate_summary(
            monitor, diff.diff_markdown, plugin=plugin, options=options
        )
        if _is_no_changes(summary):
            self.logger.info(f"{monitor.name}: snapshot only (no user-facing changes)")
            await self.repo.update_last_checked(monitor.id)
            await self._cleanup(monitor)
            return CheckResult(success=True, message="No meaningful user-facing changes")

        change = await self._create_change(monitor, latest.id, snapshot.id, diff, summary)
        self.logger.info(f"{monitor.name}: {change.ai_summary or diff.summary or 'Change detected'}")

        await self._notify(monitor, change, summary, plugin, options)
        await self.repo.update_last_checked(monitor.id)
        await self._cleanup(monitor)
        return CheckResult(
            success=True,
            message=f"Change detected: {diff.summary}",
            has_change=True,
            change_ids=[change.id],
        )

    async def _first_snapshot(self, monitor, snapshot: Snapshot, content: str, plugin, options) -> CheckResult:
        self.logger.info(f"{monitor.name}: first snapshot created")
        await self.repo.update_last_checked(monitor.id)

        change_ids = []
        if self.config.notify_on_first_snapshot:
            diff = self.differ.generate_diff("", content, monitor)
            summary = await self.summary_service.generate_summary(
                monitor, diff.diff_markdown or content, plugin=plugin, options=options
            )
            if _is_no_changes(summary):
                self.logger.info(f"{monitor.name}: initial snapshot suppressed (no changes)")
            else:
                change = await self._create_change(monitor, None, snapshot.id, diff, summary)
                change_ids.append(change.id)
                await self._notify(monitor, change, summary, plugin, options)

        await self._cleanup(monitor)
        return CheckResult(
            success=True,
            message="First snapshot created",
            has_change=bool(change_ids),
            change_ids=change_ids,
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _create_change(self, monitor, before_id, after_id, diff, summary: Optional[SummaryResult]) -> Change:
        structured = summary.structured if summary else None
        return await self.repo.create_change(
            monitor_id=monitor.id,
            before_snapshot_id=before_id,
            after_snapshot_id=after_id,
            summary=diff.summary,
            diff_md=diff.diff_markdown,
            diff_type=diff.diff_type,
            ai_summary=summary.text if summary else None,
            ai_summary_meta=structured.to_meta() if structured else None,
        )

    async def _notify(self, monitor, change: Change, summary: Optional[SummaryResult], plugin, options):
        """Gate, plugin veto, then immediate sends and weekly digest items."""
        structured = summary.structured if summary else None
        notify = should_notify(structured)
        if not notify:
            if structured is not None and structured.skip_reason:
                self.logger.info(f"{monitor.name}: notification skipped ({structured.skip_reason})")
            return
        if plugin is not None and not plugin.should_notify(change, monitor, options):
            self.logger.info(f"{monitor.name}: notification vetoed by plugin '{plugin.id}'")
            return

        links = await self.repo.get_monitor_channels(monitor.id)
        if not links:
            return
        immediate, weekly = partition_channels(links)
        if immediate:
            display_url = plugin.link_for_prompt(monitor, options) if plugin else None
            await self.notification_service.send_notifications(
                change, monitor, immediate, display_url=display_url
            )
        if weekly:
            await enqueue_weekly_digest(self.session, change, weekly)

    async def _cleanup(self, monitor):
        deleted = await cleanup_monitor_history(
            self.session, monitor.id, self.config.keep_snapshots, self.config.keep_changes
        )
        if deleted["deleted_snapshots"] or deleted["deleted_changes"]:
            self.logger.debug(
                f"{monitor.name}: retention removed {deleted['deleted_snapshots']} snapshot(s), "
                f"{deleted['deleted_changes']} change(s)"
            )


def _is_no_changes(summary: Optional[SummaryResult]) -> bool:
    return bool(summary and summary.structured and summary.structured.status == "no_changes")
