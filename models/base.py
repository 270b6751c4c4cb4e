from sqlalchemy import BigInteger, Enum, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# BIGINT on PostgreSQL; INTEGER on SQLite so the rowid alias keeps autoincrement
IdType = BigInteger().with_variant(Integer(), "sqlite")

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def enum_type(enum_cls) -> Enum:
    """Store enum *values* (lowercase strings) in a VARCHAR column."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================================================
# ENUMS
# ============================================================================

class ContentType(str, enum.Enum):
    """How a monitor's fetched payload should be interpreted"""
    WEBPAGE = "webpage"
    API = "api"
    MARKDOWN = "markdown"
    XML = "xml"


class DiffType(str, enum.Enum):
    """Shape of a detected change"""
    ADDITION = "addition"
    MODIFICATION = "modification"
    DELETION = "deletion"


class DeliveryMode(str, enum.Enum):
    """Per monitor/channel delivery schedule"""
    IMMEDIATE = "immediate"
    WEEKLY_DIGEST = "weekly_digest"


class JobStatus(str, enum.Enum):
    """Durable queue row status"""
    QUEUED = "queued"
    STARTED = "started"
    DONE = "done"
    FAILED = "failed"


class JobEventStatus(str, enum.Enum):
    """Audit trail status; adds SKIPPED to the queue statuses"""
    QUEUED = "queued"
    STARTED = "started"
    SKIPPED = "skipped"
    DONE = "done"
    FAILED = "failed"


class NotificationStatus(str, enum.Enum):
    """Per-channel delivery outcome"""
    SENT = "sent"
    FAILED = "failed"
