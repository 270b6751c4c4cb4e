"""
Notification gate and summary formatting.

The gate never trusts the summarizer's own ``should_notify``: it re-derives the
decision from the structured content so that low-signal releases (nothing but
one or two bug fixes) are recorded without pinging anyone.
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from models.change import Change
from schemas.summary import (
    StructuredSummary,
    normalize_structured_summary,
    parse_change_meta,
)

MAX_FEATURE_BULLETS = 18
MAX_FIX_BULLETS = 12
MAX_HIGHLIGHTS = 12
MAX_SUMMARY_FIXES = 5
MAX_SUMMARY_MARKDOWN = 2000
MAX_AGGREGATE_MARKDOWN = 4000

LEADING_BOLD_LINE = re.compile(r"^\s*\*\*[^\n]+\*\*\s*")

__all__ = [
    "normalize_structured_summary",
    "parse_change_meta",
    "enforce_notification_policy",
    "format_summary_markdown",
    "build_aggregated_summary",
    "AggregatedSummary",
]


def enforce_notification_policy(summary: StructuredSummary) -> StructuredSummary:
    """
    Apply the notify/suppress thresholds to a structured summary.

    Rules (first match wins):
    - status other than "ok": suppress
    - no features and no fixes: suppress
    - no features and one or two fixes: suppress
    - anything else keeps the upstream should_notify

    An upstream skip_reason is preserved when one was given.
    """
    if summary.status != "ok":
        return summary.copy(update={
            "should_notify": False,
            "skip_reason": summary.skip_reason or "no material changes",
        })

    features_count = len(summary.features)
    fixes_count = len(summary.fixes)

    if features_count == 0 and fixes_count == 0:
        return summary.copy(update={
            "should_notify": False,
            "skip_reason": summary.skip_reason or "no actionable changes detected",
        })

    if features_count == 0 and 0 < fixes_count <= 2:
        reason = "single bug fix only" if fixes_count == 1 else "two bug fixes only"
        return summary.copy(update={
            "should_notify": False,
            "skip_reason": summary.skip_reason or reason,
        })

    return summary


def should_notify(structured: Optional[StructuredSummary]) -> bool:
    """Gate decision for an optional structured summary (no summary means notify)."""
    if structured is None:
        return True
    return enforce_notification_policy(structured).should_notify


def format_summary_markdown(summary: StructuredSummary) -> Optional[str]:
    """Render a structured summary as chat-friendly markdown."""
    if summary.status != "ok":
        return None

    lines = []
    title = (summary.title or "").strip()
    if title:
        lines.append(f"**{title[:200]}**")

    if summary.features:
        lines.append("**Features**")
        lines.extend(f"- {feature}" for feature in summary.features)

    if summary.fixes:
        lines.append("**Fixes**")
        lines.extend(f"- {fix}" for fix in summary.fixes[:MAX_SUMMARY_FIXES])

    if not lines:
        return None
    return "\n".join(lines)[:MAX_SUMMARY_MARKDOWN]


# ============================================================================
# Aggregation
# ============================================================================

class AggregatedSummary:
    """Title, markdown body and ordered unique versions of a bundle of changes."""

    def __init__(self, title: str, markdown: str, versions: List[str]):
        self.title = title
        self.markdown = markdown
        self.versions = versions

    def __repr__(self):
        return f"<AggregatedSummary(title='{self.title}', versions={self.versions})>"


def _fallback_line(change: Change) -> Optional[str]:
    """First non-empty line of the AI summary, else of the diff summary."""
    text = (change.ai_summary or change.summary or "").strip()
    for line in text.split("\n"):
        line = line.strip()
        if line:
            return line
    return None


def build_aggregated_summary(
    monitor_name: str,
    items: Sequence[Tuple[Change, Optional[StructuredSummary]]],
    timeframe: Optional[Tuple[str, str]] = None,
    heading_override: Optional[str] = None,
) -> Optional[AggregatedSummary]:
    """
    Merge several changes into one notification body.

    Args:
        monitor_name: Used in the title
        items: (change, structured meta) pairs, oldest first
        timeframe: Optional (start, end) labels rendered as a "Period" line
        heading_override: Replaces the computed title

    Returns:
        AggregatedSummary, or None for an empty item list
    """
    if not items:
        return None

    versions = _unique([str(c.release_version) for c, _ in items if c.release_version])
    first_version = versions[0] if versions else None
    last_version = versions[-1] if versions else None

    title = heading_override
    if not title:
        if first_version and last_version and first_version != last_version:
            title = f"{monitor_name}: changes from {first_version} to {last_version}"
        elif last_version:
            title = f"{monitor_name} {last_version} released"
        else:
            title = f"{monitor_name}: latest updates"

    features: List[str] = []
    fixes: List[str] = []
    highlights: List[str] = []

    for change, meta in items:
        if meta is not None and meta.status == "ok":
            features.extend(meta.features[:MAX_FEATURE_BULLETS - len(features)])
            fixes.extend(meta.fixes[:MAX_FIX_BULLETS - len(fixes)])
            if meta.features or meta.fixes:
                continue
        fallback = _fallback_line(change)
        if fallback and len(highlights) < MAX_HIGHLIGHTS:
            highlights.append(fallback)

    lines = [f"**{title}**"]
    if timeframe:
        lines.append(f"Period: {timeframe[0]} → {timeframe[1]}")

    if features:
        lines.append("**Features**")
        lines.extend(f"- {bullet}" for bullet in features)

    if fixes:
        lines.append("**Fixes**")
        lines.extend(f"- {bullet}" for bullet in fixes)

    if highlights and not features and not fixes:
        lines.append("**Highlights**")
        lines.extend(f"- {bullet}" for bullet in highlights)

    markdown = "\n".join(lines)[:MAX_AGGREGATE_MARKDOWN]
    return AggregatedSummary(title=title, markdown=markdown, versions=versions)


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for value in values:
        if value not in seen:
            seen.add(value)
            out.append(value)
    return out


def format_release_summary(monitor_name: str, version: str, ai_text: Optional[str]) -> str:
    """
    Release-tagged AI text: ``**<monitor> <version> released**`` plus the body.

    A leading bold title line in the AI text is dropped since the release
    heading replaces it.
    """
    heading = f"**{monitor_name} {version} released**"
    if not ai_text:
        return heading
    body = LEADING_BOLD_LINE.sub("", ai_text, count=1).strip()
    return f"{heading}\n{body}" if body else heading
