"""Exception types raised by the feed sync job.

Only configuration and authentication errors are allowed to end a run.
Feed-level errors end a single feed; everything else is turned into a
row outcome by the orchestrator.
"""

from typing import Optional

__all__ = [
    "FeedSyncError",
    "ConfigurationError",
    "AuthenticationError",
    "FeedFetchError",
    "EmptyFeedError",
    "UpstreamAPIError",
    "RateLimitExceeded",
    "RowSkipped",
]


class FeedSyncError(Exception):
    """Base class for all feed sync errors."""
    pass


class ConfigurationError(FeedSyncError):
    """Raised when required configuration is missing or invalid."""
    pass


class AuthenticationError(FeedSyncError):
    """Raised when the catalog API rejects our client credentials."""
    pass


class FeedFetchError(FeedSyncError):
    """Raised when a feed cannot be downloaded or decoded."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class EmptyFeedError(FeedFetchError):
    """Raised when a feed has no data rows below its header."""
    pass


class UpstreamAPIError(FeedSyncError):
    """A non rate-limit error response from a remote API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitExceeded(FeedSyncError):
    """Raised when a rate-limited request is still refused after all retries."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class RowSkipped(FeedSyncError):
    """A single feed row could not be synced.

    Carries the reason that ends up in the skip log and counters.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
