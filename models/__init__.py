"""
SQLAlchemy ORM models for database tables.

This package defines the database schema of the change-watch engine:

Models:
    base: Base declarative class, portable column types and shared enums
    monitor: Watched sources and their plugin selection
    snapshot: Immutable normalized content captures
    change: Summarized differences between snapshots
    channel: Notification channels and monitor/channel links
    digest: Pending weekly digest items
    notification_event: Per-channel delivery audit
    job: Durable job queue, job locks and job events

Database Schema:
    PostgreSQL in production (JSONB for JSON columns); the same models run on
    SQLite for tests through type variants declared in models.base.

Usage:
    from models import Monitor, Snapshot, Change
    from models.base import JobStatus, DeliveryMode

Relationships:
    - Monitor → Snapshot → Change (before/after snapshot references)
    - Monitor ↔ NotificationChannel through MonitorChannel
    - Change → ChannelDigestItem, NotificationEvent
"""

from models.base import Base
from models.monitor import Monitor
from models.snapshot import Snapshot
from models.change import Change
from models.channel import NotificationChannel, MonitorChannel
from models.digest import ChannelDigestItem
from models.notification_event import NotificationEvent
from models.job import Job, JobLock, JobEvent

__all__ = [
    "Base",
    "Monitor",
    "Snapshot",
    "Change",
    "NotificationChannel",
    "MonitorChannel",
    "ChannelDigestItem",
    "NotificationEvent",
    "Job",
    "JobLock",
    "JobEvent",
]
