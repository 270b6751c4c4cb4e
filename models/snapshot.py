from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index, UniqueConstraint
from datetime import datetime
from models.base import Base, IdType


class Snapshot(Base):
    """
    Normalized content of a monitor at a point in time.

    Design:
    - Immutable once written
    - content_hash is the sha256 hex digest of content_md
    - release_version is set only for versioned (release feed) snapshots and
      is unique per monitor
    """
    __tablename__ = "snapshots"

    id = Column(IdType, primary_key=True, autoincrement=True)
    monitor_id = Column(IdType, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)

    content_hash = Column(String(64), nullable=False)
    content_md = Column(Text, nullable=False)
    release_version = Column(String(100), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("monitor_id", "release_version", name="uq_snapshot_monitor_version"),
        Index("idx_snapshot_monitor_created", "monitor_id", "created_at"),
    )

    def __repr__(self):
        return f"<Snapshot(id={self.id}, monitor_id={self.monitor_id}, version={self.release_version})>"
