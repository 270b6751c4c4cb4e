"""
Notification delivery.

NotificationService fans a change out to a monitor's linked channels, records
one NotificationEvent per (channel, change reference) and never raises for a
single channel's failure. Channel configs are decrypted per send and validated
against the channel type's pydantic schema.

Release versions that already have a "sent" event for the monitor are not
announced again unless allow_repeat is set.
"""

import asyncio
import html
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

import httpx
import logging
from pydantic import BaseModel, Field, ValidationError

from core.crypto import decrypt_config
from core.exceptions import ChannelConfigError, NotificationError
from models.base import NotificationStatus
from models.change import Change
from models.channel import MonitorChannel, NotificationChannel
from monitoring.repository import MonitorRepository
from schemas.results import SendResult

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 3800

EventRef = Tuple[Optional[int], Optional[str]]


# ============================================================================
# Channel config schemas
# ============================================================================

class WebhookConfig(BaseModel):
    url: str = Field(..., min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)


class TelegramConfig(BaseModel):
    bot_token: str = Field(..., min_length=1)
    chat_id: str = Field(..., min_length=1)


class _OpaqueConfig(BaseModel):
    """Config of a channel type without a registered schema (override notifiers)."""
    values: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Message formatting
# ============================================================================

def format_message(
    change: Change,
    monitor,
    include_link: bool,
    display_url: Optional[str] = None,
) -> str:
    """Plain-text/markdown message body shared by notifiers."""
    link = (display_url or monitor.url) if include_link else None

    if change.ai_summary:
        text = change.ai_summary.strip()
        if link:
            text += f"\n\n{link}"
        return text[:MAX_MESSAGE_LENGTH]

    lines = [f"**Change detected on {monitor.name}**"]
    if change.summary:
        lines.append(change.summary)
    if link:
        lines.append(link)
    if change.diff_md:
        lines.append("")
        lines.append(change.diff_md)
    text = "\n".join(lines)
    if len(text) > MAX_MESSAGE_LENGTH:
        text = text[:MAX_MESSAGE_LENGTH] + "\n\n...(truncated)"
    return text


BOLD_RE = re.compile(r"\*\*(.+?)\*\*")


def markdown_to_telegram_html(text: str) -> str:
    """Escape HTML and turn **bold** markers into <b> tags."""
    return BOLD_RE.sub(r"<b>\1</b>", html.escape(text, quote=False))


# ============================================================================
# Notifiers
# ============================================================================

class Notifier(ABC):
    """Channel transport."""

    @abstractmethod
    async def send(
        self,
        change: Change,
        monitor,
        channel: NotificationChannel,
        config: BaseModel,
        include_link: bool,
        display_url: Optional[str] = None,
    ) -> bool:
        """Deliver one message; False (or an exception) means failure."""


class WebhookNotifier(Notifier):
    """POST a JSON document describing the change."""

    def __init__(self, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def send(self, change, monitor, channel, config, include_link, display_url=None) -> bool:
        payload = {
            "monitor": {"id": monitor.id, "name": monitor.name, "url": monitor.url},
            "change": {
                "id": change.id,
                "summary": change.summary,
                "ai_summary": change.ai_summary,
                "diff_type": getattr(change.diff_type, "value", change.diff_type),
                "release_version": change.release_version,
            },
            "text": format_message(change, monitor, include_link, display_url),
            "link": (display_url or monitor.url) if include_link else None,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(config.url, json=payload, headers=config.headers)
        if response.status_code >= 400:
            raise NotificationError(
                f"Webhook returned HTTP {response.status_code}",
                context={"channel": channel.name, "status_code": response.status_code},
            )
        logger.info(f"notify webhook: {channel.name}")
        return True


class TelegramNotifier(Notifier):
    """Telegram Bot API sendMessage with HTML parse mode."""

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def send(self, change, monitor, channel, config, include_link, display_url=None) -> bool:
        text = markdown_to_telegram_html(format_message(change, monitor, include_link, display_url))
        if not text.strip():
            logger.error("Telegram message is empty; skipping send")
            return False

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                self.API_URL.format(token=config.bot_token),
                json={
                    "chat_id": config.chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": False,
                },
            )
        if response.status_code >= 400:
            raise NotificationError(
                f"Telegram API error: HTTP {response.status_code}",
                context={"channel": channel.name, "body": response.text[:300]},
            )
        logger.info(f"notify telegram: {channel.name}")
        return True


# Channel type -> (config schema, notifier factory)
CHANNEL_TYPES: Dict[str, Tuple[Type[BaseModel], Type[Notifier]]] = {
    "webhook": (WebhookConfig, WebhookNotifier),
    "telegram": (TelegramConfig, TelegramNotifier),
}


# ============================================================================
# Service
# ============================================================================

class NotificationService:
    """
    Send changes to channels and keep the delivery audit trail.

    Args:
        session_maker: Factory for the short sessions used for audit reads/writes
        overrides: Notifier instances by channel type (tests, custom transports)
        encryption_key: Fernet key for channel configs (settings by default)
        logger: Injectable logger
    """

    def __init__(
        self,
        session_maker,
        overrides: Optional[Dict[str, Notifier]] = None,
        encryption_key: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_maker = session_maker
        self.overrides = overrides or {}
        self.encryption_key = encryption_key
        self.logger = logger or logging.getLogger(__name__)
        self._notifiers: Dict[str, Notifier] = {}

    def _get_notifier(self, channel_type: str) -> Optional[Notifier]:
        if channel_type in self.overrides:
            return self.overrides[channel_type]
        notifier = self._notifiers.get(channel_type)
        if notifier is None and channel_type in CHANNEL_TYPES:
            notifier = CHANNEL_TYPES[channel_type][1]()
            self._notifiers[channel_type] = notifier
        return notifier

    def _load_config(self, channel: NotificationChannel) -> BaseModel:
        """
        Raises:
            ChannelConfigError: Undecryptable or schema-invalid config
        """
        raw = decrypt_config(channel.encrypted_config, self.encryption_key)
        schema = CHANNEL_TYPES.get(channel.type, (None,))[0]
        if schema is None:
            return _OpaqueConfig(values=raw)
        try:
            return schema(**raw)
        except ValidationError as e:
            raise ChannelConfigError(
                f"Invalid configuration for channel '{channel.name}'",
                context={"channel_id": channel.id, "type": channel.type},
                original_exception=e,
            )

    async def _filter_event_refs(
        self,
        monitor_id: int,
        refs: Sequence[EventRef],
        allow_repeat: bool,
    ) -> List[EventRef]:
        if not allow_repeat:
            versions = [v for _, v in refs if v]
            if versions:
                async with self.session_maker() as session:
                    already_sent = await MonitorRepository(session).sent_release_versions(monitor_id, versions)
                refs = [(c, v) for c, v in refs if not v or v not in already_sent]

        seen = set()
        unique: List[EventRef] = []
        for ref in refs:
            if ref in seen:
                continue
            seen.add(ref)
            unique.append(ref)
        return unique

    async def _record(self, refs: Sequence[EventRef], channel_id: int, status: NotificationStatus, detail: Optional[str]):
        events = [
            {
                "change_id": change_id,
                "channel_id": channel_id,
                "status": status,
                "detail": detail,
                "release_version": version,
            }
            for change_id, version in refs
            if change_id is not None
        ]
        async with self.session_maker() as session:
            await MonitorRepository(session).record_notification_events(events)

    async def send_notifications(
        self,
        change: Change,
        monitor,
        channels: Sequence[MonitorChannel],
        display_url: Optional[str] = None,
        allow_repeat: bool = False,
        event_change_refs: Optional[Sequence[EventRef]] = None,
        event_detail: Optional[str] = None,
    ) -> List[SendResult]:
        """
        Deliver a change to each active channel link.

        Args:
            change: Persisted change, or a detached copy carrying aggregated text
            monitor: Owning monitor
            channels: MonitorChannel links (channel eagerly loaded)
            display_url: Link to show instead of monitor.url
            allow_repeat: Re-announce versions that were already sent
            event_change_refs: (change_id, release_version) pairs the message
                stands for; defaults to the change itself
            event_detail: Detail stored on "sent" events

        Returns:
            One SendResult per active channel; empty when every referenced
            version was already announced
        """
        active = [link for link in channels if link.channel is not None and link.channel.active]
        if not active:
            return []

        refs = list(event_change_refs) if event_change_refs else [(change.id, change.release_version)]
        refs = await self._filter_event_refs(monitor.id, refs, allow_repeat)
        if not refs:
            self.logger.info(f"{monitor.name}: notification skipped (already announced)")
            return []

        results = await asyncio.gather(
            *(self._send_one(change, monitor, link, refs, display_url, event_detail) for link in active)
        )
        return list(results)

    async def _send_one(
        self,
        change: Change,
        monitor,
        link: MonitorChannel,
        refs: Sequence[EventRef],
        display_url: Optional[str],
        event_detail: Optional[str],
    ) -> SendResult:
        channel = link.channel

        notifier = self._get_notifier(channel.type)
        if notifier is None:
            error = f"Unknown notification type: {channel.type}"
            self.logger.error(error)
            await self._record(refs, channel.id, NotificationStatus.FAILED, "unknown notification type")
            return SendResult(channel_id=channel.id, ok=False, error=error)

        try:
            config = self._load_config(channel)
        except ChannelConfigError as e:
            self.logger.error(f"{e.message} (channel {channel.id})")
            await self._record(refs, channel.id, NotificationStatus.FAILED, "invalid configuration")
            return SendResult(channel_id=channel.id, ok=False, error=e.message)

        include_link = link.include_link if link.include_link is not None else bool(monitor.include_link)

        try:
            ok = await notifier.send(change, monitor, channel, config, include_link, display_url)
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or "unknown error"
            self.logger.error(f"Notification error [{channel.type}:{channel.name}]: {message}")
            await self._record(refs, channel.id, NotificationStatus.FAILED, message)
            return SendResult(channel_id=channel.id, ok=False, error=message)

        if ok:
            await self._record(refs, channel.id, NotificationStatus.SENT, event_detail)
            return SendResult(channel_id=channel.id, ok=True)

        error = "Notifier returned false"
        await self._record(refs, channel.id, NotificationStatus.FAILED, error)
        return SendResult(channel_id=channel.id, ok=False, error=error)
