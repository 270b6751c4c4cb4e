"""
Source-specific monitor plugins.
"""

from monitoring.plugins.types import MonitorPlugin
from monitoring.plugins.registry import PluginRegistry, default_registry, resolve_plugin
from monitoring.plugins.github_releases import GitHubReleasesPlugin
from monitoring.plugins.rss_changelog import RSSChangelogPlugin

__all__ = [
    "MonitorPlugin",
    "PluginRegistry",
    "default_registry",
    "resolve_plugin",
    "GitHubReleasesPlugin",
    "RSSChangelogPlugin",
]
