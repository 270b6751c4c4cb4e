"""
AI change summaries.

SummaryService wraps a Summarizer backend and turns its untrusted output into
a (text, structured) pair with the notification policy already applied. A
disabled service, a missing backend or any backend error yields None, and the
engine then falls back to the plain diff summary.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import logging

from core.config import settings
from core.exceptions import SummarizerError
from monitoring.policy import enforce_notification_policy, format_summary_markdown
from schemas.results import SummaryResult
from schemas.summary import StructuredSummary, normalize_structured_summary

logger = logging.getLogger(__name__)

NO_CHANGES_TEXT_RE = re.compile(r"^\s*no changes\s*$", re.IGNORECASE)
NO_CHANGES_REASON = "no material changes"
MAX_DIFF_CHARS = 60000

SUMMARY_PROMPT = """You summarize product updates for end users.

Decide whether the diff below contains user-facing changes: behavior, capabilities,
defaults, commands or flags, settings, platform support, pricing or limits,
security fixes, or concrete numbers and dates. Purely editorial differences
(typos, rephrasing, formatting, reordering) are not material: return "no_changes".

When material, split the changes into "features" (new capabilities and
noteworthy improvements, highest impact first) and "fixes" (bug, security and
reliability fixes). One short bullet per item; include every material item.

Set "should_notify" to false when there are no features and at most two fixes,
and give a short "skip_reason".

Respond with JSON only:
{{"status": "ok" | "no_changes", "title": string, "features": [string],
  "fixes": [string], "should_notify": boolean, "skip_reason": string,
  "importance": "high" | "medium" | "low"}}

Monitor: {monitor_name}
URL: {url}
{extra}
Diff:
{diff}
"""


def build_summary_prompt(
    monitor_name: str,
    url: str,
    diff_markdown: str,
    extra_instructions: Optional[str] = None,
) -> str:
    extra = f"\nAdditional context:\n{extra_instructions}\n" if extra_instructions else ""
    return SUMMARY_PROMPT.format(
        monitor_name=monitor_name,
        url=url,
        extra=extra,
        diff=diff_markdown[:MAX_DIFF_CHARS],
    )


# ============================================================================
# Backends
# ============================================================================

class Summarizer(ABC):
    """Summary backend contract."""

    @abstractmethod
    async def summarize(
        self,
        monitor_name: str,
        url: str,
        diff_markdown: str,
        extra_instructions: Optional[str] = None,
    ) -> Optional[SummaryResult]:
        """Return raw text and/or a normalized structured summary, or None."""


class HTTPSummarizer(Summarizer):
    """
    OpenAI-compatible chat completions backend.

    The model is asked for a JSON object; its content is normalized with
    normalize_structured_summary and rendered with format_summary_markdown.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url or settings.AI_API_URL
        self.api_key = api_key or settings.AI_API_KEY
        self.model = model or settings.AI_MODEL
        self.timeout = timeout or settings.AI_TIMEOUT_SECONDS
        self.transport = transport

    async def summarize(
        self,
        monitor_name: str,
        url: str,
        diff_markdown: str,
        extra_instructions: Optional[str] = None,
    ) -> Optional[SummaryResult]:
        if not self.api_key:
            raise SummarizerError("AI_API_KEY is not configured", context={"api_url": self.api_url})

        prompt = build_summary_prompt(monitor_name, url, diff_markdown, extra_instructions)
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    json=body,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SummarizerError(
                "Summary request failed",
                context={"api_url": self.api_url, "model": self.model},
                original_exception=e,
            )

        content = _message_content(payload)
        if content is None:
            raise SummarizerError("Summary response had no message content", context={"model": self.model})

        structured = None
        try:
            structured = normalize_structured_summary(json.loads(content))
        except ValueError:
            logger.debug("Summary response was not JSON; using it as plain text")

        if structured is not None:
            return SummaryResult(text=format_summary_markdown(structured), structured=structured)
        return SummaryResult(text=content.strip() or None, structured=None)


def _message_content(payload: Dict[str, Any]) -> Optional[str]:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


# ============================================================================
# Service
# ============================================================================

class SummaryService:
    """
    Policy-aware front for a Summarizer.

    Args:
        summarizer: Backend, or None when no provider is configured
        enabled: Master switch (settings.AI_SUMMARIES_ENABLED by default)
        logger: Injectable logger
    """

    def __init__(
        self,
        summarizer: Optional[Summarizer] = None,
        enabled: Optional[bool] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.summarizer = summarizer
        self.enabled = settings.AI_SUMMARIES_ENABLED if enabled is None else enabled
        self.logger = logger or logging.getLogger(__name__)

    async def generate_summary(
        self,
        monitor,
        diff_markdown: str,
        extra: Optional[str] = None,
        plugin=None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Optional[SummaryResult]:
        """
        Summarize a diff for a monitor.

        Args:
            monitor: Monitor being checked
            diff_markdown: Differ markdown (or raw content for first snapshots)
            extra: Per-slice context such as a merged PR list
            plugin: Resolved plugin; contributes prompt hints and the display link
            options: The plugin's per-monitor options

        Returns:
            SummaryResult, or None when disabled or on backend failure
        """
        if not self.enabled or self.summarizer is None:
            return None

        plugin_extra = plugin.prompt_extra(monitor, options) if plugin else None
        extra_instructions = "\n\n".join(s for s in (plugin_extra, extra) if s and s.strip()) or None
        url = (plugin.link_for_prompt(monitor, options) if plugin else None) or monitor.url

        try:
            output = await self.summarizer.summarize(monitor.name, url, diff_markdown, extra_instructions)
        except Exception as e:
            self.logger.error(f"{monitor.name}: summary error: {e}")
            return None

        if output is None:
            return None
        return self._apply_policy(output)

    def _apply_policy(self, output: SummaryResult) -> SummaryResult:
        structured = output.structured
        if structured is not None:
            structured = enforce_notification_policy(structured)
            if structured.status == "no_changes":
                return SummaryResult(text=None, structured=structured)
            return SummaryResult(text=output.text, structured=structured)

        if output.text and NO_CHANGES_TEXT_RE.match(output.text):
            return SummaryResult(
                text=None,
                structured=StructuredSummary(
                    status="no_changes",
                    should_notify=False,
                    skip_reason=NO_CHANGES_REASON,
                ),
            )

        return SummaryResult(text=output.text, structured=None)
