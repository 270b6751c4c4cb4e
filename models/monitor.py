from sqlalchemy import Column, String, Integer, DateTime, Text, Boolean, Index
from datetime import datetime
from models.base import Base, IdType, JSONType, ContentType, enum_type


class Monitor(Base):
    """
    A watched source (web page, feed or API endpoint).

    Purpose:
    - Holds the fetch target and check cadence
    - Selects an optional plugin explicitly via plugin_id/plugin_options

    Design:
    - The monitor engine only ever writes last_checked_at
    - Monitors are never deleted by the engine
    """
    __tablename__ = "monitors"

    id = Column(IdType, primary_key=True, autoincrement=True)

    name = Column(String(200), nullable=False)
    url = Column(Text, nullable=False)
    interval_minutes = Column(Integer, nullable=False, default=60)
    content_type = Column(enum_type(ContentType), nullable=False, default=ContentType.WEBPAGE)
    include_link = Column(Boolean, nullable=False, default=True)
    active = Column(Boolean, nullable=False, default=True, index=True)

    # Explicit plugin selection; None means plain content handling
    plugin_id = Column(String(100), nullable=True)
    plugin_options = Column(JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_checked_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_monitor_active_checked", "active", "last_checked_at"),
    )

    def __repr__(self):
        return f"<Monitor(id={self.id}, name='{self.name}', active={self.active})>"
