"""
Change detection: the monitor engine and its default collaborators.
"""

from monitoring.service import EngineConfig, MonitorService
from monitoring.releases import ReleaseReconciler
from monitoring.fetcher import HTTPFetcher
from monitoring.content import HTMLToMarkdown
from monitoring.differ import LineDiffer
from monitoring.summarizer import HTTPSummarizer, SummaryService
from monitoring.notifier import NotificationService

__all__ = [
    "EngineConfig",
    "MonitorService",
    "ReleaseReconciler",
    "HTTPFetcher",
    "HTMLToMarkdown",
    "LineDiffer",
    "HTTPSummarizer",
    "SummaryService",
    "NotificationService",
]
