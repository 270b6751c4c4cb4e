from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index
from datetime import datetime
from models.base import Base, IdType, JSONType, DiffType, enum_type


class Change(Base):
    """
    A detected, summarized difference between two snapshots.

    Design:
    - before_snapshot_id is None for first-snapshot changes
    - ai_summary_meta holds the versioned structured summary (schemas.summary)
    - Only the AI fields may be refreshed after creation
    """
    __tablename__ = "changes"

    id = Column(IdType, primary_key=True, autoincrement=True)
    monitor_id = Column(IdType, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    before_snapshot_id = Column(IdType, ForeignKey("snapshots.id", ondelete="SET NULL"), nullable=True)
    after_snapshot_id = Column(IdType, ForeignKey("snapshots.id", ondelete="CASCADE"), nullable=False)

    summary = Column(Text, nullable=True)
    diff_md = Column(Text, nullable=True)
    diff_type = Column(enum_type(DiffType), nullable=True)
    ai_summary = Column(Text, nullable=True)
    ai_summary_meta = Column(JSONType, nullable=True)
    release_version = Column(String(100), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_change_monitor_created", "monitor_id", "created_at"),
    )

    def __repr__(self):
        return f"<Change(id={self.id}, monitor_id={self.monitor_id}, type={self.diff_type})>"
