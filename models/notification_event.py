from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index
from datetime import datetime
from models.base import Base, IdType, NotificationStatus, enum_type


class NotificationEvent(Base):
    """
    Per-channel delivery audit row.

    Sent rows carrying a release_version are what keeps a version from being
    announced twice for the same monitor.
    """
    __tablename__ = "notification_events"

    id = Column(IdType, primary_key=True, autoincrement=True)
    change_id = Column(IdType, ForeignKey("changes.id", ondelete="CASCADE"), nullable=False)
    channel_id = Column(IdType, ForeignKey("notification_channels.id", ondelete="CASCADE"), nullable=True)

    status = Column(enum_type(NotificationStatus), nullable=False)
    detail = Column(Text, nullable=True)
    release_version = Column(String(100), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_notification_event_change", "change_id"),
    )
