"""
Factories and fake collaborators shared by the test suite
"""

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.crypto import encrypt_config
from models.base import ContentType, DeliveryMode
from models.channel import MonitorChannel, NotificationChannel
from models.monitor import Monitor
from monitoring.notifier import Notifier
from monitoring.summarizer import Summarizer
from schemas.results import FetchResult, SummaryResult
from schemas.summary import StructuredSummary

# base64 of 32 ASCII bytes; a valid Fernet key
TEST_ENCRYPTION_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="


# ============================================================================
# Factories
# ============================================================================

async def create_monitor(session: AsyncSession, **fields) -> Monitor:
    values = {
        "name": "Example Docs",
        "url": "https://example.com/changelog",
        "interval_minutes": 60,
        "content_type": ContentType.MARKDOWN,
        "include_link": True,
        "active": True,
    }
    values.update(fields)
    monitor = Monitor(**values)
    session.add(monitor)
    await session.commit()
    return monitor


async def create_channel(
    session: AsyncSession,
    monitor: Monitor,
    delivery_mode: DeliveryMode = DeliveryMode.IMMEDIATE,
    channel_type: str = "webhook",
    config: Optional[dict] = None,
    active: bool = True,
    name: str = "team-hook",
) -> NotificationChannel:
    channel = NotificationChannel(
        name=name,
        type=channel_type,
        encrypted_config=encrypt_config(config or {"url": "https://hooks.example.com/notify"}, TEST_ENCRYPTION_KEY),
        active=active,
    )
    session.add(channel)
    await session.commit()

    session.add(MonitorChannel(monitor_id=monitor.id, channel_id=channel.id, delivery_mode=delivery_mode))
    await session.commit()
    return channel


# ============================================================================
# Fake collaborators
# ============================================================================

class FakeFetcher:
    """Returns queued contents in order, repeating the last one"""

    def __init__(self, *contents: str, content_type: str = "text/markdown"):
        self.contents = list(contents)
        self.content_type = content_type
        self.calls = 0

    def set(self, content: str):
        self.contents = [content]

    async def check(self, monitor) -> FetchResult:
        self.calls += 1
        content = self.contents.pop(0) if len(self.contents) > 1 else self.contents[0]
        return FetchResult(success=True, content=content, content_type=self.content_type, status_code=200)


class FailingFetcher:
    async def check(self, monitor) -> FetchResult:
        return FetchResult(success=False, status_code=503, error="HTTP 503")


class FakeSummarizer(Summarizer):
    """Hands out prepared SummaryResults (the last one repeats)"""

    def __init__(self, *results: Optional[SummaryResult]):
        self.results = list(results)
        self.prompts: List[dict] = []

    async def summarize(self, monitor_name, url, diff_markdown, extra_instructions=None):
        self.prompts.append({"url": url, "diff": diff_markdown, "extra": extra_instructions})
        if not self.results:
            return None
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


class RecordingNotifier(Notifier):
    """Notifier override that records every send"""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: List[dict] = []

    async def send(self, change, monitor, channel, config, include_link, display_url=None) -> bool:
        self.sent.append({
            "change_id": change.id,
            "text": change.ai_summary or change.summary,
            "channel_id": channel.id,
            "include_link": include_link,
            "display_url": display_url,
        })
        return self.ok


def structured(features=(), fixes=(), status="ok", title="Update", should_notify=True) -> StructuredSummary:
    return StructuredSummary(
        status=status,
        title=title,
        features=list(features),
        fixes=list(fixes),
        should_notify=should_notify,
    )


def summary_result(features=(), fixes=(), status="ok", title="Update") -> SummaryResult:
    meta = structured(features, fixes, status=status, title=title)
    lines = [f"**{title}**"] + [f"- {f}" for f in features] + [f"- {f}" for f in fixes]
    return SummaryResult(text="\n".join(lines) if status == "ok" else None, structured=meta)
