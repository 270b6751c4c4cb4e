from sqlalchemy import Column, String, Integer, DateTime, Text, Index, UniqueConstraint
from datetime import datetime
from models.base import Base, IdType, JSONType, JobStatus, JobEventStatus, enum_type


class Job(Base):
    """
    Durable queue row.

    Lifecycle: queued -> started -> done | failed. A started job older than the
    timeout window is put back to queued by the maintenance sweep.
    """
    __tablename__ = "jobs"

    id = Column(IdType, primary_key=True, autoincrement=True)
    type = Column(String(100), nullable=False)
    payload = Column(JSONType, nullable=True)
    # Enqueue is skipped while a queued/started job holds the same (type, dedupe_key)
    dedupe_key = Column(String(255), nullable=True)

    status = Column(enum_type(JobStatus), nullable=False, default=JobStatus.QUEUED)
    attempts = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_job_status_id", "status", "id"),
        Index("idx_job_type_dedupe", "type", "dedupe_key"),
    )

    def __repr__(self):
        return f"<Job(id={self.id}, type='{self.type}', status={self.status})>"


class JobLock(Base):
    """Mutual exclusion row; the unique (type, key) pair is the lock."""
    __tablename__ = "job_locks"

    id = Column(IdType, primary_key=True, autoincrement=True)
    type = Column(String(100), nullable=False)
    key = Column(String(255), nullable=False)
    job_id = Column(String(64), nullable=True)
    acquired_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("type", "key", name="uq_job_lock_type_key"),
    )


class JobEvent(Base):
    """Append-only audit trail of job lifecycle transitions."""
    __tablename__ = "job_events"

    id = Column(IdType, primary_key=True, autoincrement=True)
    job_id = Column(String(64), nullable=True, index=True)
    type = Column(String(100), nullable=False)
    status = Column(enum_type(JobEventStatus), nullable=False)
    monitor_id = Column(IdType, nullable=True, index=True)
    message = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
