"""
Per-monitor history retention.

Keeps the newest N snapshots and newest M changes of a monitor, ordered by
(created_at desc, id desc). A keep count of 0 deletes every row of that kind.

Dependent rows are removed explicitly rather than relying on FK cascades,
since SQLite does not enforce them by default:
- changes whose after-snapshot is deleted go with it
- digest items and notification events of deleted changes are deleted
- before-snapshot references to deleted snapshots are set to NULL
"""

from typing import Dict, List

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models.change import Change
from models.digest import ChannelDigestItem
from models.notification_event import NotificationEvent
from models.snapshot import Snapshot

logger = logging.getLogger(__name__)


async def _ids_beyond_keep(session: AsyncSession, model, monitor_id: int, keep: int) -> List[int]:
    """Ids of the monitor's rows older than the newest ``keep``."""
    result = await session.execute(
        select(model.id)
        .where(model.monitor_id == monitor_id)
        .order_by(model.created_at.desc(), model.id.desc())
        .offset(keep)
    )
    return [row[0] for row in result.all()]


async def cleanup_monitor_history(
    session: AsyncSession,
    monitor_id: int,
    keep_snapshots: int,
    keep_changes: int,
) -> Dict[str, int]:
    """
    Trim a monitor's snapshots and changes to the configured counts.

    Args:
        session: Database session
        monitor_id: Monitor to trim
        keep_snapshots: Snapshots to keep (0 deletes all)
        keep_changes: Changes to keep (0 deletes all)

    Returns:
        {"deleted_snapshots": int, "deleted_changes": int}
    """
    keep_snapshots = max(0, int(keep_snapshots))
    keep_changes = max(0, int(keep_changes))

    snapshot_ids = await _ids_beyond_keep(session, Snapshot, monitor_id, keep_snapshots)
    change_ids = set(await _ids_beyond_keep(session, Change, monitor_id, keep_changes))

    if snapshot_ids:
        orphaned = await session.execute(
            select(Change.id).where(Change.after_snapshot_id.in_(snapshot_ids))
        )
        change_ids.update(row[0] for row in orphaned.all())

    if not snapshot_ids and not change_ids:
        return {"deleted_snapshots": 0, "deleted_changes": 0}

    deleted_changes = 0
    if change_ids:
        ids = list(change_ids)
        await session.execute(
            delete(ChannelDigestItem).where(ChannelDigestItem.change_id.in_(ids))
        )
        await session.execute(
            delete(NotificationEvent).where(NotificationEvent.change_id.in_(ids))
        )
        result = await session.execute(
            delete(Change).where(Change.id.in_(ids)).execution_options(synchronize_session=False)
        )
        deleted_changes = result.rowcount or 0

    deleted_snapshots = 0
    if snapshot_ids:
        await session.execute(
            update(Change)
            .where(Change.before_snapshot_id.in_(snapshot_ids))
            .values(before_snapshot_id=None)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(
            delete(Snapshot).where(Snapshot.id.in_(snapshot_ids)).execution_options(synchronize_session=False)
        )
        deleted_snapshots = result.rowcount or 0

    await session.commit()

    logger.debug(
        f"Retention for monitor {monitor_id}: "
        f"deleted {deleted_snapshots} snapshot(s), {deleted_changes} change(s)"
    )
    return {"deleted_snapshots": deleted_snapshots, "deleted_changes": deleted_changes}
