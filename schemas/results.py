"""
Pydantic schemas for engine and collaborator results.

These are the contracts between the monitor engine and its collaborators
(fetcher, differ, summarizer, notifier) and the values handed back to the
worker pool.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from models.base import DiffType
from schemas.summary import StructuredSummary


class FetchResult(BaseModel):
    """Outcome of fetching a monitor URL"""
    success: bool
    content: Optional[str] = None
    content_type: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


class DiffBlock(BaseModel):
    """One added or removed run of lines"""
    type: str  # "added" | "removed"
    value: str


class DiffResult(BaseModel):
    """
    Raw text diff between two normalized contents.

    An empty ``changes`` list means the contents only differ in ways the
    differ ignores (whitespace-only blocks); the engine treats it as a no-op.
    """
    diff_type: DiffType
    summary: str
    diff_markdown: str
    changes: List[DiffBlock] = Field(default_factory=list)


class SummaryResult(BaseModel):
    """AI summary text plus its structured, policy-enforced form"""
    text: Optional[str] = None
    structured: Optional[StructuredSummary] = None


class SendResult(BaseModel):
    """Per-channel delivery outcome"""
    channel_id: int
    ok: bool
    error: Optional[str] = None


class CheckResult(BaseModel):
    """Result of one monitor check"""
    success: bool
    message: str
    has_change: bool = False
    change_ids: List[int] = Field(default_factory=list)


class DigestTarget(BaseModel):
    """Weekly digest bucket for a reference time (all naive UTC)"""
    digest_at: datetime
    digest_key: str
    period_start: datetime
    period_end: datetime


class DigestGroup(BaseModel):
    """Pending digest items sharing (monitor, channel, digest_at)"""
    monitor_id: int
    channel_id: int
    digest_at: datetime
    digest_key: str
    item_ids: List[int] = Field(default_factory=list)
    change_ids: List[int] = Field(default_factory=list)


class DigestJobResult(BaseModel):
    """Outcome of a notification.digest job"""
    status: str  # "sent" | "skipped" | "none"
    message: str
