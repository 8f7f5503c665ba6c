"""
Rate limiting exceptions.

``RateLimitExceededError`` is also a protocol ``RateLimitedError``, so a
tool or method handler that calls ``RateLimiter.enforce`` produces a
JSON-RPC -32029 error carrying ``retry_after`` without extra mapping.
"""

from typing import Optional

from mcp_kit.protocol.exceptions import RateLimitedError


class RateLimitError(Exception):
    """Base exception for limiter setup and storage failures."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class RateLimitConfigurationError(RateLimitError, ValueError):
    """A policy value is out of range."""


class RateLimitBackendError(RateLimitError):
    """The counter store failed or was called with an invalid window."""


class RateLimitExceededError(RateLimitedError):
    """The caller used up its budget for the current window."""

    def __init__(self, message: str, retry_after: int, key: Optional[str] = None):
        super().__init__(message, retry_after=retry_after)
        self.key = key
