"""
Custom exceptions for the change-detection engine with structured error context.

Every error raised by the engine, the job queue or a collaborator carries a
context dict so that job events and logs can say which monitor, channel or job
was involved.

Exception Hierarchy:
    MonitorEngineError (base)
    ├── FetchError
    │   ├── RateLimitError
    │   └── ContentTooLargeError
    ├── TransformError
    │   └── PluginError
    ├── SummarizerError
    ├── NotificationError
    │   ├── ChannelConfigError
    │   └── DigestDeliveryError
    └── JobError
        ├── UnknownJobTypeError
        └── InvalidJobPayloadError
"""

from typing import Optional, Dict, Any
from datetime import datetime


class MonitorEngineError(Exception):
    """
    Base exception for all engine errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (monitor_id, url, job_id, ...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        context = {k: v for k, v in self.context.items() if k != "error_timestamp"}
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {self.original_exception}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Fetch Errors
# ============================================================================

class FetchError(MonitorEngineError):
    """
    Raised when a monitor URL cannot be retrieved.

    Context should include:
        - url: The URL that failed
        - status_code: HTTP status code (if applicable)
        - attempts: Number of attempts made
    """
    pass


class RateLimitError(FetchError):
    """HTTP 429 from the monitored host."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class ContentTooLargeError(FetchError):
    """Response body exceeded the configured size limit."""
    pass


# ============================================================================
# Transform Errors
# ============================================================================

class TransformError(MonitorEngineError):
    """Raised when fetched content cannot be normalized."""
    pass


class PluginError(TransformError):
    """
    Raised when a monitor plugin's transform fails on fetched content.

    Context should include:
        - plugin_id: Registry id of the plugin
        - monitor_id: Monitor being checked
    """
    pass


# ============================================================================
# Summary / Notification Errors
# ============================================================================

class SummarizerError(MonitorEngineError):
    """AI summarizer call failed or returned an unusable payload."""
    pass


class NotificationError(MonitorEngineError):
    """A notifier transport failed to deliver a message."""
    pass


class ChannelConfigError(NotificationError):
    """Channel config could not be decrypted or is missing required keys."""
    pass


class DigestDeliveryError(NotificationError):
    """
    Raised by the digest job when at least one channel send failed.

    The digest items stay pending so the group is picked up again.
    """
    pass


# ============================================================================
# Job Errors
# ============================================================================

class JobError(MonitorEngineError):
    """Base exception for job queue failures."""
    pass


class UnknownJobTypeError(JobError):
    """No handler is registered for the job type."""
    pass


class InvalidJobPayloadError(JobError):
    """Job payload is missing required fields or has the wrong types."""
    pass
