"""
Core utilities and configuration for the change-watch engine.

This package provides foundational components used by the monitor engine,
the job queue and the API:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session factories
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration
    crypto: Channel config encryption helpers

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import FetchError, NotificationError
    from core.logging import setup_logging

Example:
    setup_logging()

    async with async_session_maker() as session:
        ...
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "MonitorEngineError",
    "FetchError",
    "RateLimitError",
    "ContentTooLargeError",
    "TransformError",
    "PluginError",
    "SummarizerError",
    "NotificationError",
    "ChannelConfigError",
    "DigestDeliveryError",
    "JobError",
    "UnknownJobTypeError",
    "InvalidJobPayloadError",
]
