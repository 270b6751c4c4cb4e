"""
Changelog feed plugin (RSS or Atom).

Every feed item that names a version becomes a release slice; its HTML body
is converted to markdown and flattened into ``- `` bullets.
"""

import re
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

import feedparser

from monitoring.content import HTMLToMarkdown
from monitoring.plugins.types import MonitorPlugin, PluginOptions, bullet_lines, normalize_version
from schemas.plugin import ReleasesResult, ReleaseSlice, SkipResult

BACKTICK_VERSION_RE = re.compile(r"`\s*(v?\d[\d.\-]*)\s*`")
DOTTED_VERSION_RE = re.compile(r"\b(v?\d+\.\d+(?:\.\d+)?(?:[-+.][^\s`<]+)?)\b")
FEED_PATH_RE = re.compile(r"/(rss\.xml|atom\.xml|feed\.xml|feed|rss)/?$", re.IGNORECASE)
RSS_SUFFIX_RE = re.compile(r"/rss\.xml$", re.IGNORECASE)

EMPTY_BODY_PLACEHOLDER = "- Release published"


def extract_version(text: str) -> Optional[str]:
    """Backticked version first (``1.4.2``), else the first dotted version."""
    backtick = BACKTICK_VERSION_RE.search(text)
    if backtick:
        return normalize_version(backtick.group(1))
    dotted = DOTTED_VERSION_RE.search(text)
    if dotted:
        return normalize_version(dotted.group(1))
    return None


def _item_html(entry) -> str:
    content = entry.get("content") or []
    if content and content[0].get("value"):
        return content[0]["value"]
    return entry.get("summary", "") or entry.get("description", "") or ""


class RSSChangelogPlugin(MonitorPlugin):
    id = "rss-changelog"

    def __init__(self, converter: Optional[HTMLToMarkdown] = None):
        self.converter = converter or HTMLToMarkdown()

    def match(self, monitor) -> bool:
        path = urlsplit(monitor.url or "").path
        return "changelog" in path.lower() and bool(FEED_PATH_RE.search(path))

    def transform(self, raw, content_type, monitor, options: PluginOptions = None):
        feed = feedparser.parse(raw or "")
        if not feed.entries:
            return SkipResult(reason="no items")

        releases: List[ReleaseSlice] = []
        for entry in feed.entries:
            title = (entry.get("title") or "").strip()
            markdown = "\n".join(bullet_lines(self.converter.convert(_item_html(entry))))

            version = extract_version(f"{title}\n{markdown}")
            if not version:
                continue
            releases.append(
                ReleaseSlice(
                    version=version,
                    markdown=markdown or EMPTY_BODY_PLACEHOLDER,
                    link=entry.get("link"),
                )
            )

        if not releases:
            return SkipResult(reason="no releases parsed")
        return ReleasesResult(releases=releases)

    def link_for_prompt(self, monitor, options: PluginOptions = None) -> Optional[str]:
        parts = urlsplit(monitor.url)
        if not RSS_SUFFIX_RE.search(parts.path):
            return monitor.url
        return urlunsplit(parts._replace(path=RSS_SUFFIX_RE.sub("", parts.path)))
