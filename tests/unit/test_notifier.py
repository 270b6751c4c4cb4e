"""
Unit tests for message formatting, notifier transports and channel config encryption
"""

import json
from unittest.mock import patch

import httpx
import pytest
from core.config import settings
from core.crypto import decrypt_config, encrypt_config
from core.exceptions import ChannelConfigError, NotificationError
from models.base import DiffType
from models.change import Change
from models.channel import NotificationChannel
from models.monitor import Monitor
from monitoring.notifier import (
    TelegramConfig,
    TelegramNotifier,
    WebhookConfig,
    WebhookNotifier,
    format_message,
    markdown_to_telegram_html,
)
from tests.helpers import TEST_ENCRYPTION_KEY

OTHER_KEY = "ZmVkY2JhOTg3NjU0MzIxMGZlZGNiYTk4NzY1NDMyMTA="


@pytest.fixture
def monitor():
    return Monitor(id=1, name="Acme CLI", url="https://github.com/acme/cli/releases.atom")


@pytest.fixture
def channel():
    return NotificationChannel(id=3, name="team-hook", type="webhook")


def make_change(**fields):
    values = {"id": 5, "summary": "markdown: 1 addition", "diff_type": DiffType.ADDITION}
    values.update(fields)
    return Change(**values)


def recording_transport(status_code=200):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(status_code, text="nope" if status_code >= 400 else "ok")

    return httpx.MockTransport(handler), requests


# ============================================================================
# Formatting
# ============================================================================

def test_message_uses_ai_summary_and_link(monitor):
    change = make_change(ai_summary="**Acme CLI v1.2.0 released**\n- Sandbox mode\n")

    text = format_message(change, monitor, include_link=True, display_url="https://github.com/acme/cli/releases")

    assert text == "**Acme CLI v1.2.0 released**\n- Sandbox mode\n\nhttps://github.com/acme/cli/releases"


def test_message_without_link(monitor):
    change = make_change(ai_summary="**Docs updated**")

    assert format_message(change, monitor, include_link=False) == "**Docs updated**"


def test_message_falls_back_to_diff(monitor):
    change = make_change(diff_md="```diff\n+ new line\n```")

    text = format_message(change, monitor, include_link=True)

    assert text == (
        "**Change detected on Acme CLI**\n"
        "markdown: 1 addition\n"
        "https://github.com/acme/cli/releases.atom\n"
        "\n"
        "```diff\n+ new line\n```"
    )


def test_long_fallback_message_is_truncated(monitor):
    change = make_change(diff_md="x" * 5000)

    text = format_message(change, monitor, include_link=False)

    assert text.endswith("...(truncated)")
    assert len(text) < 4000


def test_markdown_to_telegram_html():
    assert markdown_to_telegram_html("**Fix <tag>** & more") == "<b>Fix &lt;tag&gt;</b> &amp; more"


# ============================================================================
# Transports
# ============================================================================

@pytest.mark.asyncio
async def test_webhook_posts_change_document(monitor, channel):
    transport, requests = recording_transport()
    notifier = WebhookNotifier(transport=transport)
    config = WebhookConfig(url="https://hooks.example.com/notify", headers={"X-Token": "secret"})
    change = make_change(ai_summary="**Docs updated**", release_version="v1.2.0")

    ok = await notifier.send(change, monitor, channel, config, include_link=False)

    assert ok is True
    assert str(requests[0].url) == "https://hooks.example.com/notify"
    assert requests[0].headers["X-Token"] == "secret"
    body = json.loads(requests[0].content)
    assert body["monitor"] == {"id": 1, "name": "Acme CLI", "url": monitor.url}
    assert body["change"]["id"] == 5
    assert body["change"]["diff_type"] == "addition"
    assert body["change"]["release_version"] == "v1.2.0"
    assert body["text"] == "**Docs updated**"
    assert body["link"] is None


@pytest.mark.asyncio
async def test_webhook_error_status_raises(monitor, channel):
    transport, _ = recording_transport(status_code=500)
    notifier = WebhookNotifier(transport=transport)

    with pytest.raises(NotificationError) as exc_info:
        await notifier.send(make_change(), monitor, channel, WebhookConfig(url="https://hooks.example.com"), True)

    assert exc_info.value.message == "Webhook returned HTTP 500"


@pytest.mark.asyncio
async def test_telegram_sends_html_message(monitor, channel):
    transport, requests = recording_transport()
    notifier = TelegramNotifier(transport=transport)
    config = TelegramConfig(bot_token="123:abc", chat_id="-100")

    ok = await notifier.send(make_change(ai_summary="**Docs updated**"), monitor, channel, config, False)

    assert ok is True
    assert str(requests[0].url) == "https://api.telegram.org/bot123:abc/sendMessage"
    body = json.loads(requests[0].content)
    assert body["chat_id"] == "-100"
    assert body["parse_mode"] == "HTML"
    assert body["text"] == "<b>Docs updated</b>"


# ============================================================================
# Channel config encryption
# ============================================================================

def test_config_round_trips_through_encryption():
    token = encrypt_config({"url": "https://hooks.example.com"}, TEST_ENCRYPTION_KEY)

    assert "hooks.example.com" not in token
    assert decrypt_config(token, TEST_ENCRYPTION_KEY) == {"url": "https://hooks.example.com"}


def test_wrong_key_is_a_config_error():
    token = encrypt_config({"url": "https://hooks.example.com"}, TEST_ENCRYPTION_KEY)

    with pytest.raises(ChannelConfigError):
        decrypt_config(token, OTHER_KEY)


def test_config_must_be_an_object():
    token = encrypt_config(["not", "a", "dict"], TEST_ENCRYPTION_KEY)

    with pytest.raises(ChannelConfigError) as exc_info:
        decrypt_config(token, TEST_ENCRYPTION_KEY)

    assert exc_info.value.message == "Channel config must be a JSON object"


def test_missing_encryption_key():
    with patch.object(settings, "CHANNEL_ENCRYPTION_KEY", None):
        with pytest.raises(ChannelConfigError):
            encrypt_config({"url": "https://hooks.example.com"})
