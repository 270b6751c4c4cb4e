"""
Release-slice reconciliation.

Used when a plugin exposes a versioned history (newest first) instead of one
flat document. New slices are those ahead of the newest stored release
version; they are processed oldest to newest so each Change's before/after
snapshots form a chain.

Flow:
1. existing version = release_version of the newest versioned snapshot
2. no existing version: seed only the newest slice, no Change
3. otherwise collect slices until the existing version (exclusive)
4. walk them chronologically: snapshot, diff against the chain predecessor,
   summarize, create a version-tagged Change, collect notify candidates
5. one candidate is sent on its own; several are aggregated into a single
   message referencing every change; weekly channels get one digest item per
   candidate
"""

import logging
from typing import List, Optional

from models.change import Change
from models.snapshot import Snapshot
from monitoring.content import hash_content
from monitoring.digest import detached_change_copy, enqueue_weekly_digest, partition_channels
from monitoring.policy import build_aggregated_summary, format_release_summary, should_notify
from monitoring.repository import MonitorRepository
from monitoring.retention import cleanup_monitor_history
from schemas.plugin import ReleaseSlice
from schemas.results import CheckResult
from schemas.summary import StructuredSummary


class NotifyCandidate:
    """A freshly recorded release change that passed the gate."""

    def __init__(self, change: Change, meta: Optional[StructuredSummary], release: ReleaseSlice):
        self.change = change
        self.meta = meta
        self.release = release


class ReleaseReconciler:
    """
    Turn a plugin's release list into snapshots, changes and notifications.

    Args:
        session: Session of the running check
        differ: Differ collaborator
        summary_service: SummaryService (may return None)
        notification_service: NotificationService for immediate channels
        config: EngineConfig (retention counts)
        logger: Injectable logger
    """

    def __init__(self, session, differ, summary_service, notification_service, config, logger=None):
        self.session = session
        self.repo = MonitorRepository(session)
        self.differ = differ
        self.summary_service = summary_service
        self.notification_service = notification_service
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def select_new_releases(releases: List[ReleaseSlice], existing_version: Optional[str]) -> List[ReleaseSlice]:
        """Newest-first slices ahead of ``existing_version``; just the newest on a first run."""
        if not releases:
            return []
        if not existing_version:
            return [releases[0]]
        new = []
        for release in releases:
            if release.version == existing_version:
                break
            new.append(release)
        return new

    async def reconcile(self, monitor, releases: List[ReleaseSlice], plugin=None, options=None) -> CheckResult:
        if not releases:
            await self.repo.update_last_checked(monitor.id)
            return CheckResult(success=True, message="No releases available")

        latest_snapshot = await self.repo.get_latest_snapshot(monitor.id)
        latest_release = await self.repo.get_latest_release_snapshot(monitor.id)
        existing_version = latest_release.release_version if latest_release else None

        new_releases = self.select_new_releases(releases, existing_version)
        if not new_releases:
            await self.repo.update_last_checked(monitor.id)
            return CheckResult(success=True, message="No new releases")

        first_seed = existing_version is None
        previous: Optional[Snapshot] = latest_snapshot
        seeded = False
        candidates: List[NotifyCandidate] = []
        suppressed: List[str] = []
        created: List[Change] = []

        # ----------------------------------------------------------------
        # Walk oldest -> newest
        # ----------------------------------------------------------------
        for release in reversed(new_releases):
            stored = await self.repo.get_snapshot_by_version(monitor.id, release.version)
            if stored is not None:
                previous = stored
                continue

            markdown = release.snapshot_markdown()
            snapshot = await self.repo.create_snapshot(
                monitor.id,
                hash_content(markdown),
                markdown,
                release_version=release.version,
            )

            if previous is None or (first_seed and not seeded):
                seeded = True
                previous = snapshot
                continue

            diff = self.differ.generate_diff(previous.content_md, markdown, monitor)
            if not diff.changes:
                previous = snapshot
                continue

            summary = None
            if plugin is None or plugin.use_ai_summary(monitor, release, options):
                summary = await self.summary_service.generate_summary(
                    monitor,
                    diff.diff_markdown,
                    extra=release.ai_extra,
                    plugin=plugin,
                    options=options,
                )
            structured = summary.structured if summary else None
            if structured is not None and structured.status == "no_changes":
                self.logger.info(f"{monitor.name} {release.version}: snapshot only (no user-facing changes)")
                previous = snapshot
                continue

            ai_text = summary.text if summary else None
            formatted = format_release_summary(monitor.name, release.version, ai_text)
            if plugin is not None:
                override = plugin.format_ai_summary(monitor, release, ai_text, options)
                if override and override.strip():
                    formatted = override.strip()

            change = await self.repo.create_change(
                monitor_id=monitor.id,
                before_snapshot_id=previous.id,
                after_snapshot_id=snapshot.id,
                summary=diff.summary,
                diff_md=diff.diff_markdown,
                diff_type=diff.diff_type,
                ai_summary=formatted,
                ai_summary_meta=structured.to_meta() if structured else None,
                release_version=release.version,
            )
            created.append(change)
            self.logger.info(f"{monitor.name} {release.version} released")

            notify = should_notify(structured)
            allowed = plugin is None or plugin.should_notify(change, monitor, options)
            if notify and allowed:
                candidates.append(NotifyCandidate(change, structured, release))
            elif not notify and structured is not None and structured.skip_reason:
                suppressed.append(f"{release.version}: {structured.skip_reason}")

            previous = snapshot

        await self.repo.update_last_checked(monitor.id)

        if not created and first_seed:
            self.logger.info(f"{monitor.name}: release snapshot seeded ({new_releases[0].version})")

        # ----------------------------------------------------------------
        # Dispatch
        # ----------------------------------------------------------------
        if candidates:
            await self._dispatch(monitor, candidates, plugin, options)
        elif suppressed:
            self.logger.info(f"{monitor.name}: release notification skipped ({suppressed[0]})")

        await cleanup_monitor_history(
            self.session, monitor.id, self.config.keep_snapshots, self.config.keep_changes
        )

        if not created:
            return CheckResult(success=True, message="No changes detected")

        count = len(created)
        return CheckResult(
            success=True,
            message=f"Recorded {count} new release{'' if count == 1 else 's'}",
            has_change=True,
            change_ids=[c.id for c in created],
        )

    async def _dispatch(self, monitor, candidates: List[NotifyCandidate], plugin, options):
        links = await self.repo.get_monitor_channels(monitor.id)
        if not links:
            return
        immediate, weekly = partition_channels(links)
        default_url = plugin.link_for_prompt(monitor, options) if plugin else None

        if immediate:
            if len(candidates) == 1:
                only = candidates[0]
                slice_url = plugin.link_for_slice(monitor, only.release, options) if plugin else None
                await self.notification_service.send_notifications(
                    only.change,
                    monitor,
                    immediate,
                    display_url=slice_url or default_url,
                )
            else:
                await self._send_bundle(monitor, candidates, immediate, default_url)

        # aggregation for weekly channels happens when the digest is sent
        if weekly:
            for candidate in candidates:
                await enqueue_weekly_digest(self.session, candidate.change, weekly)

    async def _send_bundle(self, monitor, candidates: List[NotifyCandidate], links, display_url):
        aggregated = build_aggregated_summary(monitor.name, [(c.change, c.meta) for c in candidates])

        text = aggregated.markdown if aggregated else ""
        if not text.strip():
            pieces = [(c.change.ai_summary or c.change.summary or "").strip() for c in candidates]
            text = "\n\n".join(p for p in pieces if p)
        if not text.strip():
            text = f"**{monitor.name}: recent releases**\n- {len(candidates)} releases recorded."

        bundle = detached_change_copy(candidates[-1].change, ai_summary=text.strip())
        await self.notification_service.send_notifications(
            bundle,
            monitor,
            links,
            display_url=display_url,
            event_change_refs=[(c.change.id, c.change.release_version) for c in candidates],
            event_detail=aggregated.title if aggregated else "release bundle",
        )
