"""
Plugin registry and per-monitor resolution.

Resolution order:
1. ``monitor.plugin_id`` names a registered plugin: use it with
   ``monitor.plugin_options``. An unknown id resolves to no plugin.
2. Auto-detection (opt-in): the first registered plugin whose ``match``
   accepts the monitor. Registration order is specificity order.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from models.monitor import Monitor
from monitoring.plugins.github_releases import GitHubReleasesPlugin
from monitoring.plugins.rss_changelog import RSSChangelogPlugin
from monitoring.plugins.types import MonitorPlugin, PluginOptions

logger = logging.getLogger(__name__)

Resolved = Tuple[Optional[MonitorPlugin], PluginOptions]


class PluginRegistry:
    """Ordered collection of plugins keyed by id."""

    def __init__(self, plugins: Optional[Iterable[MonitorPlugin]] = None):
        self._plugins: Dict[str, MonitorPlugin] = {}
        for plugin in plugins or ():
            self.register(plugin)

    def register(self, plugin: MonitorPlugin):
        if not plugin.id:
            raise ValueError(f"Plugin {plugin!r} has no id")
        if plugin.id in self._plugins:
            raise ValueError(f"Plugin '{plugin.id}' is already registered")
        self._plugins[plugin.id] = plugin

    def get(self, plugin_id: str) -> Optional[MonitorPlugin]:
        return self._plugins.get(plugin_id)

    def plugins(self) -> List[MonitorPlugin]:
        return list(self._plugins.values())

    def __contains__(self, plugin_id: str) -> bool:
        return plugin_id in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)

    def resolve(self, monitor: Monitor, enable_auto_detect: bool = False) -> Resolved:
        """
        Pick the plugin for a monitor.

        Args:
            monitor: Monitor being checked
            enable_auto_detect: Allow ``match``-based selection when the
                monitor has no explicit plugin_id

        Returns:
            (plugin, options); (None, None) when no plugin applies
        """
        if monitor.plugin_id:
            plugin = self.get(monitor.plugin_id)
            if plugin is None:
                logger.warning(f"{monitor.name}: unknown plugin '{monitor.plugin_id}', using plain content")
                return None, None
            return plugin, dict(monitor.plugin_options or {})

        if not enable_auto_detect:
            return None, None

        for plugin in self._plugins.values():
            try:
                matched = plugin.match(monitor)
            except Exception as e:
                logger.warning(f"{monitor.name}: plugin '{plugin.id}' match failed: {e}")
                continue
            if matched:
                logger.debug(f"{monitor.name}: auto-detected plugin '{plugin.id}'")
                return plugin, None
        return None, None


def default_registry() -> PluginRegistry:
    """Registry with the shipped plugins, most specific first."""
    return PluginRegistry([GitHubReleasesPlugin(), RSSChangelogPlugin()])


def resolve_plugin(
    monitor: Monitor,
    enable_auto_detect: bool = False,
    registry: Optional[PluginRegistry] = None,
) -> Resolved:
    """Resolve against ``registry`` (the default registry when omitted)."""
    return (registry or default_registry()).resolve(monitor, enable_auto_detect)
