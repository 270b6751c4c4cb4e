"""
Monitor plugin contract.

A plugin turns the raw body of a specific kind of source (a release feed, a
changelog) into either versioned release slices or replacement content. Only
``id``, ``match`` and ``transform`` are required; every other hook has a
neutral default so the engine can call them unconditionally.

``transform`` is synchronous and CPU-bound (feed parsing, HTML conversion);
the engine runs it in a worker thread.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from models.change import Change
from models.monitor import Monitor
from schemas.plugin import ReleaseSlice, TransformResult
from schemas.summary import StructuredSummary

PluginOptions = Optional[Dict[str, Any]]
DigestItems = Sequence[Tuple[Change, Optional[StructuredSummary]]]


class MonitorPlugin(ABC):
    """Source-specific transformer selected per monitor."""

    id: str = ""

    @abstractmethod
    def match(self, monitor: Monitor) -> bool:
        """True when this plugin understands the monitor's source."""

    @abstractmethod
    def transform(
        self,
        raw: str,
        content_type: Optional[str],
        monitor: Monitor,
        options: PluginOptions = None,
    ) -> TransformResult:
        """Turn fetched content into a SkipResult, ReleasesResult or ContentResult."""

    def should_notify(self, change: Change, monitor: Monitor, options: PluginOptions = None) -> bool:
        return True

    def link_for_prompt(self, monitor: Monitor, options: PluginOptions = None) -> Optional[str]:
        return None

    def link_for_slice(
        self,
        monitor: Monitor,
        release: ReleaseSlice,
        options: PluginOptions = None,
    ) -> Optional[str]:
        return None

    def use_ai_summary(
        self,
        monitor: Monitor,
        release: ReleaseSlice,
        options: PluginOptions = None,
    ) -> bool:
        return True

    def format_ai_summary(
        self,
        monitor: Monitor,
        release: ReleaseSlice,
        ai_text: Optional[str],
        options: PluginOptions = None,
    ) -> Optional[str]:
        """Override the release-tagged AI text; None keeps the default format."""
        return None

    def prompt_extra(self, monitor: Monitor, options: PluginOptions = None) -> Optional[str]:
        return None

    def format_digest(
        self,
        monitor: Monitor,
        items: DigestItems,
        timeframe: Optional[Tuple[str, str]] = None,
        options: PluginOptions = None,
    ) -> Optional[str]:
        """Custom weekly digest body; None falls back to the aggregated summary."""
        return None

    def __repr__(self):
        return f"<{type(self).__name__}(id='{self.id}')>"


def normalize_version(version: str) -> str:
    """Prefix a bare version with ``v``."""
    version = version.strip()
    return version if version.startswith("v") else f"v{version}"


def bullet_lines(markdown: str) -> List[str]:
    """Non-empty lines of converted markdown, each forced into a ``- `` bullet."""
    lines = []
    for line in markdown.split("\n"):
        line = line.strip()
        if not line:
            continue
        if line.startswith(("* ", "+ ")):
            line = "- " + line[2:]
        elif not line.startswith("- "):
            line = f"- {line}"
        lines.append(line)
    return lines
