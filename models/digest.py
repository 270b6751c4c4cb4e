from sqlalchemy import Column, String, DateTime, ForeignKey, Index, UniqueConstraint
from datetime import datetime
from models.base import Base, IdType


class ChannelDigestItem(Base):
    """
    A change waiting for a channel's weekly digest.

    Design:
    - Unique per (channel_id, change_id) so re-enqueueing is a no-op
    - Items of one (monitor, channel, digest_at) group are sent together
    - sent_at stays NULL until the digest went out (or was skipped)
    """
    __tablename__ = "channel_digest_items"

    id = Column(IdType, primary_key=True, autoincrement=True)
    monitor_id = Column(IdType, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    channel_id = Column(IdType, ForeignKey("notification_channels.id", ondelete="CASCADE"), nullable=False)
    change_id = Column(IdType, ForeignKey("changes.id", ondelete="CASCADE"), nullable=False)

    digest_at = Column(DateTime, nullable=False)
    digest_key = Column(String(10), nullable=False)
    sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("channel_id", "change_id", name="uq_digest_channel_change"),
        Index("idx_digest_pending", "sent_at", "digest_at"),
    )
