"""
Channel partitioning and weekly digest scheduling.

Changes bound for a ``weekly_digest`` channel are parked as ChannelDigestItem
rows bucketed by week (Monday 00:00 UTC). Each bucket is sent the following
Monday at 09:00 UTC by a ``notification.digest`` job, as one aggregated message
per (monitor, channel, week).
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.exceptions import DigestDeliveryError, InvalidJobPayloadError
from models.base import DeliveryMode
from models.change import Change
from models.channel import MonitorChannel
from models.digest import ChannelDigestItem
from monitoring.policy import build_aggregated_summary
from monitoring.repository import MonitorRepository, insert_ignore_duplicates
from schemas.results import DigestGroup, DigestJobResult, DigestTarget
from schemas.summary import parse_change_meta

logger = logging.getLogger(__name__)

DIGEST_SEND_HOUR = 9


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def partition_channels(
    channels: Sequence[MonitorChannel],
) -> Tuple[List[MonitorChannel], List[MonitorChannel]]:
    """Split links into (immediate, weekly); anything not weekly_digest is immediate."""
    immediate: List[MonitorChannel] = []
    weekly: List[MonitorChannel] = []
    for link in channels:
        if link.delivery_mode == DeliveryMode.WEEKLY_DIGEST:
            weekly.append(link)
        else:
            immediate.append(link)
    return immediate, weekly


def compute_digest_target(reference: Optional[datetime] = None) -> DigestTarget:
    """
    Weekly bucket for a reference time.

    The week starts Monday 00:00 UTC; its digest is sent the next Monday at
    09:00 UTC. digest_key is the ISO date of the starting Monday.
    """
    reference = _as_naive_utc(reference or datetime.utcnow())
    day = datetime(reference.year, reference.month, reference.day)
    week_start = day - timedelta(days=day.weekday())
    send_at = week_start + timedelta(days=7, hours=DIGEST_SEND_HOUR)
    return DigestTarget(
        digest_at=send_at,
        digest_key=week_start.date().isoformat(),
        period_start=week_start,
        period_end=send_at,
    )


async def enqueue_weekly_digest(
    session: AsyncSession,
    change: Change,
    weekly_channels: Sequence[MonitorChannel],
) -> int:
    """
    Park a change for each weekly channel's next digest.

    Re-enqueueing the same (channel, change) is a no-op.

    Returns:
        Number of digest items created
    """
    if not weekly_channels:
        return 0

    target = compute_digest_target(change.created_at)
    rows = [
        {
            "monitor_id": change.monitor_id,
            "channel_id": link.channel_id,
            "change_id": change.id,
            "digest_at": target.digest_at,
            "digest_key": target.digest_key,
            "created_at": datetime.utcnow(),
        }
        for link in weekly_channels
    ]
    inserted = await insert_ignore_duplicates(
        session, ChannelDigestItem, rows, index_elements=["channel_id", "change_id"]
    )
    await session.commit()
    logger.debug(f"Queued change {change.id} for {inserted} weekly digest(s) at {target.digest_at}")
    return inserted


async def list_pending_digest_groups(
    session: AsyncSession,
    cutoff: Optional[datetime] = None,
) -> List[DigestGroup]:
    """
    Unsent digest items due at or before cutoff, grouped by (monitor, channel, digest_at).

    Groups come back ordered by digest_at, monitor and channel; item and change
    ids keep insertion order.
    """
    cutoff = _as_naive_utc(cutoff or datetime.utcnow())
    result = await session.execute(
        select(ChannelDigestItem)
        .where(
            ChannelDigestItem.sent_at.is_(None),
            ChannelDigestItem.digest_at <= cutoff,
        )
        .order_by(
            ChannelDigestItem.digest_at,
            ChannelDigestItem.monitor_id,
            ChannelDigestItem.channel_id,
            ChannelDigestItem.id,
        )
    )

    groups: Dict[Tuple[int, int, datetime], DigestGroup] = {}
    for item in result.scalars().all():
        key = (item.monitor_id, item.channel_id, item.digest_at)
        group = groups.get(key)
        if group is None:
            group = DigestGroup(
                monitor_id=item.monitor_id,
                channel_id=item.channel_id,
                digest_at=item.digest_at,
                digest_key=item.digest_key,
            )
            groups[key] = group
        group.item_ids.append(item.id)
        group.change_ids.append(item.change_id)

    return list(groups.values())


async def mark_digest_items_sent(
    session: AsyncSession,
    item_ids: Sequence[int],
    at: Optional[datetime] = None,
) -> int:
    """Stamp sent_at on still-pending items; returns the number updated."""
    if not item_ids:
        return 0
    result = await session.execute(
        update(ChannelDigestItem)
        .where(
            ChannelDigestItem.id.in_(list(item_ids)),
            ChannelDigestItem.sent_at.is_(None),
        )
        .values(sent_at=at or datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount or 0


# ============================================================================
# notification.digest job
# ============================================================================

def parse_digest_payload(payload: Any) -> Tuple[int, int, datetime]:
    """
    Validate a notification.digest payload.

    Raises:
        InvalidJobPayloadError: Missing or malformed monitor_id/channel_id/digest_at
    """
    if not isinstance(payload, dict):
        raise InvalidJobPayloadError("Digest payload must be an object")
    try:
        monitor_id = int(payload["monitor_id"])
        channel_id = int(payload["channel_id"])
        digest_at = payload["digest_at"]
        if isinstance(digest_at, str):
            digest_at = datetime.fromisoformat(digest_at)
        if not isinstance(digest_at, datetime):
            raise TypeError("digest_at must be an ISO timestamp")
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidJobPayloadError(
            "Invalid digest payload", context={"payload": payload}, original_exception=e
        )
    return monitor_id, channel_id, _as_naive_utc(digest_at)


def digest_timeframe(digest_key: str, digest_at: datetime) -> Tuple[str, str]:
    """Date labels for the digest period: week start through the moment before send."""
    end = digest_at - timedelta(milliseconds=1)
    return digest_key, end.date().isoformat()


async def process_digest_job(
    session: AsyncSession,
    payload: Dict[str, Any],
    notification_service,
    plugin_resolver=None,
) -> DigestJobResult:
    """
    Send one weekly digest group.

    Outcomes:
    - "none": nothing pending for the group (already sent, or never existed)
    - "skipped": monitor inactive, channel unlinked/not weekly, or changes gone;
      the items are marked sent so they are not retried forever
    - "sent": one aggregated notification went out and the items are marked sent

    Raises:
        DigestDeliveryError: A channel send failed; items stay pending
    """
    monitor_id, channel_id, digest_at = parse_digest_payload(payload)
    repo = MonitorRepository(session)

    groups = await list_pending_digest_groups(session, digest_at)
    group = next(
        (
            g for g in groups
            if g.monitor_id == monitor_id and g.channel_id == channel_id and g.digest_at == digest_at
        ),
        None,
    )
    if group is None or not group.item_ids:
        return DigestJobResult(status="none", message="no pending digest items")

    monitor = await repo.get_monitor(monitor_id)
    if monitor is None or not monitor.active:
        await mark_digest_items_sent(session, group.item_ids)
        return DigestJobResult(status="skipped", message="monitor missing or inactive")

    links = await repo.get_monitor_channels(monitor.id, active_only=True)
    link = next((l for l in links if l.channel_id == channel_id), None)
    if link is None or link.delivery_mode != DeliveryMode.WEEKLY_DIGEST:
        await mark_digest_items_sent(session, group.item_ids)
        return DigestJobResult(status="skipped", message="channel unavailable")

    changes = await repo.get_changes_by_ids(group.change_ids)
    if not changes:
        await mark_digest_items_sent(session, group.item_ids)
        return DigestJobResult(status="skipped", message="changes missing")

    changes.sort(key=lambda c: (c.created_at, c.id))
    items = [(change, parse_change_meta(change.ai_summary_meta)) for change in changes]

    plugin, options = (None, None)
    if plugin_resolver is not None:
        plugin, options = plugin_resolver(monitor)
    display_url = plugin.link_for_prompt(monitor, options) if plugin else None
    timeframe = digest_timeframe(group.digest_key, group.digest_at)

    custom = plugin.format_digest(monitor, items, timeframe, options) if plugin else None
    if custom:
        title = f"{monitor.name}: weekly digest"
        summary_text = custom
    else:
        aggregated = build_aggregated_summary(monitor.name, items, timeframe=timeframe)
        title = aggregated.title if aggregated else "weekly digest"
        summary_text = aggregated.markdown if aggregated else ""

    if not summary_text.strip():
        pieces = [(c.ai_summary or c.summary or "").strip() for c in changes]
        summary_text = "\n\n".join(p for p in pieces if p)
    if not summary_text.strip():
        count = len(changes)
        summary_text = f"**{monitor.name}: weekly digest**\n- {count} change{'' if count == 1 else 's'} recorded."
    summary_text = summary_text.strip()

    latest = changes[-1]
    digest_change = detached_change_copy(latest, ai_summary=summary_text)
    event_refs = [(c.id, c.release_version) for c in changes]

    results = await notification_service.send_notifications(
        digest_change,
        monitor,
        [link],
        display_url=display_url,
        # digest items are already unique per (channel, change)
        allow_repeat=True,
        event_change_refs=event_refs,
        event_detail=title,
    )
    failed = [r for r in results if not r.ok]
    if failed:
        raise DigestDeliveryError(
            failed[0].error or "failed to send digest",
            context={"monitor_id": monitor_id, "channel_id": channel_id, "digest_key": group.digest_key},
        )

    await mark_digest_items_sent(session, group.item_ids)
    await repo.update_link_last_digest(monitor.id, channel_id, group.digest_at)

    count = len(changes)
    logger.info(f"{monitor.name}: weekly digest sent to channel {channel_id} ({count} change(s))")
    return DigestJobResult(status="sent", message=f"sent {count} change{'' if count == 1 else 's'}")


def detached_change_copy(change: Change, **overrides) -> Change:
    """
    Transient Change carrying the same ids as ``change`` with overridden fields.

    Used to send aggregated text without touching the persisted row; the
    structured meta is dropped since it no longer describes the text.
    """
    fields = {
        "id": change.id,
        "monitor_id": change.monitor_id,
        "before_snapshot_id": change.before_snapshot_id,
        "after_snapshot_id": change.after_snapshot_id,
        "summary": change.summary,
        "diff_md": change.diff_md,
        "diff_type": change.diff_type,
        "ai_summary": change.ai_summary,
        "ai_summary_meta": None,
        "release_version": change.release_version,
        "created_at": change.created_at,
    }
    fields.update(overrides)
    return Change(**fields)
