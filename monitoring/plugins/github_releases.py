"""
GitHub releases.atom plugin.

Each stable release entry becomes one slice holding the bullet list found
under its highlights / "What's changed" / release-notes label (or the first
list in the body). A "Merged PRs" section is not stored in the snapshot; it is
handed to the summarizer as extra context.

Options:
    ignore_pre_releases (default True): skip alpha/beta/rc entries
    require_notes (default True): skip entries without a bullet list instead
        of recording a placeholder
"""

import re
from typing import List, Optional

import feedparser

from monitoring.content import HTMLToMarkdown
from monitoring.plugins.types import MonitorPlugin, PluginOptions, normalize_version
from schemas.plugin import ReleasesResult, ReleaseSlice, SkipResult

RELEASES_ATOM_RE = re.compile(r"github\.com/[^/]+/[^/]+/releases\.atom$", re.IGNORECASE)
PRE_RELEASE_RE = re.compile(r"\b(alpha|beta|rc)\b|-(alpha|beta|rc)", re.IGNORECASE)
VERSION_RE = re.compile(r"v?\d+\.\d+\.\d+(?:[-+.][^\s]+)?")

HIGHLIGHT_LABELS = (
    r"highlights?",
    r"what['’]s\s+changed",
    r"what\s+changed",
    r"release\s+highlights?",
    r"release\s+notes?",
)
LABEL_RE = re.compile(
    r"<(h[1-6]|p|strong|b)[^>]*>[\s\S]{0,200}?(?:%s)[\s\S]*?</\1>" % "|".join(HIGHLIGHT_LABELS),
    re.IGNORECASE,
)
HEADING_OPEN_RE = re.compile(r"<h[1-6][^>]*>", re.IGNORECASE)
LIST_RE = re.compile(r"<(ul|ol)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
UL_RE = re.compile(r"<ul[^>]*>[\s\S]*?</ul>", re.IGNORECASE)
MERGED_PRS_RE = re.compile(
    r"<h[1-6][^>]*>\s*(?:Full\s+list\s+of\s+)?Merged\s*PRs:?\s*</h[1-6]>([\s\S]*?)(?:<h[1-6][^>]*>|$)",
    re.IGNORECASE,
)
BULLET_RE = re.compile(r"^([-*+]|\d+\.)\s+(.*)$")

NO_NOTES_PLACEHOLDER = "- No highlights provided."


def is_pre_release(title: str) -> bool:
    return bool(PRE_RELEASE_RE.search(title))


def extract_highlights_html(body_html: str) -> Optional[str]:
    """
    The bullet list that follows a highlights-style label, else the first <ul>.

    The search after the label stops at the next heading.
    """
    label = LABEL_RE.search(body_html)
    if label:
        after = body_html[label.end():]
        next_heading = HEADING_OPEN_RE.search(after)
        scope = after[:next_heading.start()] if next_heading else after
        listing = LIST_RE.search(scope)
        if listing:
            return listing.group(0)

    fallback = UL_RE.search(body_html)
    return fallback.group(0) if fallback else None


def normalize_bullet_line(line: str) -> Optional[str]:
    """``*``, ``+`` and ordered items become ``- `` bullets; other lines are dropped."""
    if not line.strip():
        return None
    indent = line[:len(line) - len(line.lstrip())]
    match = BULLET_RE.match(line.strip())
    if not match:
        return None
    content = match.group(2).strip()
    if not content:
        return None
    return f"{indent}- {content}"


def _bullets(markdown: str) -> List[str]:
    lines = (normalize_bullet_line(line.rstrip()) for line in markdown.split("\n"))
    return [line for line in lines if line is not None]


def _entry_html(entry) -> str:
    content = entry.get("content") or []
    if content:
        return content[0].get("value", "") or ""
    return entry.get("summary", "") or ""


class GitHubReleasesPlugin(MonitorPlugin):
    id = "github-releases"

    def __init__(self, converter: Optional[HTMLToMarkdown] = None):
        self.converter = converter or HTMLToMarkdown()

    def match(self, monitor) -> bool:
        content_type = getattr(monitor.content_type, "value", monitor.content_type)
        return content_type == "xml" and bool(RELEASES_ATOM_RE.search(monitor.url or ""))

    def transform(self, raw, content_type, monitor, options: PluginOptions = None):
        options = options or {}
        ignore_pre = options.get("ignore_pre_releases", True)
        require_notes = options.get("require_notes", True)

        feed = feedparser.parse(raw or "")
        releases: List[ReleaseSlice] = []

        # feed order is newest first
        for entry in feed.entries:
            title = (entry.get("title") or "").strip()
            if not title:
                continue
            if ignore_pre and is_pre_release(title):
                continue

            body_html = _entry_html(entry)
            notes = ""
            highlights = extract_highlights_html(body_html)
            if highlights:
                lines = _bullets(self.converter.convert(highlights))
                if any(line.lstrip().startswith("- ") for line in lines):
                    notes = "\n".join(lines).strip()

            if not notes:
                if require_notes:
                    continue
                notes = NO_NOTES_PLACEHOLDER

            ai_extra = None
            merged = MERGED_PRS_RE.search(body_html)
            if merged:
                merged_lines = _bullets(self.converter.convert(merged.group(1)))
                if merged_lines:
                    ai_extra = "Merged PRs:\n" + "\n".join(merged_lines)

            version_match = VERSION_RE.search(title)
            version = version_match.group(0) if version_match else title
            releases.append(
                ReleaseSlice(
                    version=normalize_version(version),
                    markdown=notes,
                    link=entry.get("link"),
                    ai_extra=ai_extra,
                )
            )

        if not releases:
            return SkipResult(reason="no stable releases found")
        return ReleasesResult(releases=releases)

    def link_for_prompt(self, monitor, options: PluginOptions = None) -> Optional[str]:
        if re.search(r"releases\.atom$", monitor.url, re.IGNORECASE):
            return re.sub(r"releases\.atom$", "releases", monitor.url, flags=re.IGNORECASE)
        return None

    def link_for_slice(self, monitor, release: ReleaseSlice, options: PluginOptions = None) -> Optional[str]:
        return release.link
