"""
Data access for the monitor engine.

Each call commits its own unit of work so a check's progress (snapshot written,
change recorded, last-checked stamped) is durable step by step, the way the
engine expects: a crash after the snapshot insert must not roll it back.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models.base import NotificationStatus
from models.change import Change
from models.channel import MonitorChannel, NotificationChannel
from models.monitor import Monitor
from models.notification_event import NotificationEvent
from models.snapshot import Snapshot

logger = logging.getLogger(__name__)


async def insert_ignore_duplicates(
    session: AsyncSession,
    model,
    rows: Sequence[Dict[str, Any]],
    index_elements: Sequence[str],
) -> int:
    """
    INSERT ... ON CONFLICT DO NOTHING for PostgreSQL and SQLite.

    Returns:
        Number of rows actually inserted
    """
    if not rows:
        return 0

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert_fn = postgresql.insert
    elif dialect == "sqlite":
        insert_fn = sqlite.insert
    else:
        raise NotImplementedError(f"Unsupported dialect for conflict-free insert: {dialect}")

    stmt = insert_fn(model).values(list(rows)).on_conflict_do_nothing(
        index_elements=list(index_elements)
    )
    result = await session.execute(stmt)
    return result.rowcount or 0


class MonitorRepository:
    """Monitor, snapshot, change and channel queries used by the engine."""

    def __init__(self, session: AsyncSession):
        self.db = session

    # --------------------------------------------------
    # Monitors
    # --------------------------------------------------

    async def get_monitor(self, monitor_id: int) -> Optional[Monitor]:
        return await self.db.get(Monitor, monitor_id)

    async def list_active_monitors(self) -> List[Monitor]:
        result = await self.db.execute(
            select(Monitor).where(Monitor.active.is_(True)).order_by(Monitor.id)
        )
        return list(result.scalars().all())

    async def update_last_checked(self, monitor_id: int, at: Optional[datetime] = None):
        await self.db.execute(
            update(Monitor)
            .where(Monitor.id == monitor_id)
            .values(last_checked_at=at or datetime.utcnow())
        )
        await self.db.commit()

    # --------------------------------------------------
    # Snapshots
    # --------------------------------------------------

    async def get_latest_snapshot(self, monitor_id: int) -> Optional[Snapshot]:
        result = await self.db.execute(
            select(Snapshot)
            .where(Snapshot.monitor_id == monitor_id)
            .order_by(Snapshot.created_at.desc(), Snapshot.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def get_latest_release_snapshot(self, monitor_id: int) -> Optional[Snapshot]:
        result = await self.db.execute(
            select(Snapshot)
            .where(
                Snapshot.monitor_id == monitor_id,
                Snapshot.release_version.is_not(None),
            )
            .order_by(Snapshot.created_at.desc(), Snapshot.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def get_snapshot_by_version(self, monitor_id: int, version: str) -> Optional[Snapshot]:
        result = await self.db.execute(
            select(Snapshot).where(
                Snapshot.monitor_id == monitor_id,
                Snapshot.release_version == version,
            )
        )
        return result.scalars().first()

    async def create_snapshot(
        self,
        monitor_id: int,
        content_hash: str,
        content_md: str,
        release_version: Optional[str] = None,
    ) -> Snapshot:
        snapshot = Snapshot(
            monitor_id=monitor_id,
            content_hash=content_hash,
            content_md=content_md,
            release_version=release_version,
            created_at=datetime.utcnow(),
        )
        self.db.add(snapshot)
        await self.db.commit()
        return snapshot

    # --------------------------------------------------
    # Changes
    # --------------------------------------------------

    async def create_change(self, **fields) -> Change:
        fields.setdefault("created_at", datetime.utcnow())
        change = Change(**fields)
        self.db.add(change)
        await self.db.commit()
        return change

    async def get_changes_by_ids(self, change_ids: Sequence[int]) -> List[Change]:
        if not change_ids:
            return []
        result = await self.db.execute(select(Change).where(Change.id.in_(list(change_ids))))
        return list(result.scalars().all())

    # --------------------------------------------------
    # Channels
    # --------------------------------------------------

    async def get_monitor_channels(self, monitor_id: int, active_only: bool = True) -> List[MonitorChannel]:
        """Links for a monitor, with the channel eagerly joined."""
        stmt = (
            select(MonitorChannel)
            .join(NotificationChannel, NotificationChannel.id == MonitorChannel.channel_id)
            .where(MonitorChannel.monitor_id == monitor_id)
            .order_by(MonitorChannel.channel_id)
        )
        if active_only:
            stmt = stmt.where(NotificationChannel.active.is_(True))
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all())

    async def update_link_last_digest(self, monitor_id: int, channel_id: int, at: datetime):
        await self.db.execute(
            update(MonitorChannel)
            .where(
                MonitorChannel.monitor_id == monitor_id,
                MonitorChannel.channel_id == channel_id,
            )
            .values(last_digest_at=at)
        )
        await self.db.commit()

    # --------------------------------------------------
    # Notification events
    # --------------------------------------------------

    async def sent_release_versions(self, monitor_id: int, versions: Sequence[str]) -> Set[str]:
        """Release versions of this monitor that already have a sent event."""
        if not versions:
            return set()
        result = await self.db.execute(
            select(NotificationEvent.release_version)
            .join(Change, Change.id == NotificationEvent.change_id)
            .where(
                Change.monitor_id == monitor_id,
                NotificationEvent.status == NotificationStatus.SENT,
                NotificationEvent.release_version.in_(list(versions)),
            )
            .distinct()
        )
        return {row[0] for row in result.all()}

    async def record_notification_events(self, events: Sequence[Dict[str, Any]]):
        """Insert delivery audit rows; failures are logged and ignored."""
        if not events:
            return
        try:
            for event in events:
                self.db.add(NotificationEvent(created_at=datetime.utcnow(), **event))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to record notification events: {e}")
