"""
Exception hierarchy for the sync pipeline

Task-level errors (fetch, create, expired-indicator query) abort the task
that raised them. Per-item errors inside loops are logged and skipped.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for all sync pipeline errors"""


class ConfigError(SyncError):
    """Configuration is missing or invalid"""


class InvalidArgument(SyncError, ValueError):
    """An operation was called with an unusable argument"""


class TransportError(SyncError):
    """
    HTTP or network failure against MISP or Sentinel

    Attributes:
        status_code: HTTP status code if a response was received
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimited(TransportError):
    """Sentinel refused a request because of its request-rate cap"""


class ParseError(SyncError):
    """A timestamp field of an indicator could not be parsed"""


class RunCancelled(SyncError):
    """The run was cancelled before the task finished"""
