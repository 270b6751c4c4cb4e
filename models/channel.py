from sqlalchemy import Column, String, DateTime, Text, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, IdType, DeliveryMode, enum_type


class NotificationChannel(Base):
    """
    A delivery target (webhook, chat integration, ...).

    encrypted_config is a Fernet token produced by core.crypto.encrypt_config.
    """
    __tablename__ = "notification_channels"

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    type = Column(String(50), nullable=False)
    encrypted_config = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<NotificationChannel(id={self.id}, type='{self.type}', active={self.active})>"


class MonitorChannel(Base):
    """Link between a monitor and a channel with its delivery settings."""
    __tablename__ = "monitor_channels"

    monitor_id = Column(IdType, ForeignKey("monitors.id", ondelete="CASCADE"), primary_key=True)
    channel_id = Column(IdType, ForeignKey("notification_channels.id", ondelete="CASCADE"), primary_key=True)

    # None falls back to Monitor.include_link
    include_link = Column(Boolean, nullable=True)
    delivery_mode = Column(enum_type(DeliveryMode), nullable=False, default=DeliveryMode.IMMEDIATE)
    last_digest_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    channel = relationship("NotificationChannel", lazy="joined")
