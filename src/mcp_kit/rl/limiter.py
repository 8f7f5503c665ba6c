"""Fixed-window rate limiter."""

from dataclasses import dataclass
from typing import Optional, Tuple

from .backend import LimiterBackend, MemoryBackend
from .exceptions import RateLimitConfigurationError, RateLimitExceededError


@dataclass
class RatePolicy:
    """Rate limiting policy configuration."""
    limit: int = 60
    window_seconds: int = 60

    def __post_init__(self):
        if self.limit < 1:
            raise RateLimitConfigurationError("limit must be >= 1", str(self.limit))
        if self.window_seconds < 1:
            raise RateLimitConfigurationError("window_seconds must be >= 1", str(self.window_seconds))


class RateLimiter:
    """Rate limiter that uses a backend to track and enforce rate limits."""

    def __init__(self, backend: LimiterBackend, policy: Optional[RatePolicy] = None):
        """Initialize rate limiter with backend and policy."""
        self._backend = backend
        self._policy = policy or RatePolicy()

    @property
    def policy(self) -> RatePolicy:
        return self._policy

    def check_and_consume(self, key: str) -> Tuple[bool, int]:
        """
        Count one request against `key`.
        If count > policy.limit -> return (False, ttl_remaining)
        Else -> return (True, 0)
        """
        count, ttl_remaining = self._backend.incr_and_get(key, self._policy.window_seconds)

        if count > self._policy.limit:
            return False, ttl_remaining
        return True, 0

    def enforce(self, key: str) -> None:
        """Like check_and_consume, but raise when the limit is exceeded."""
        allowed, retry_after = self.check_and_consume(key)
        if not allowed:
            raise RateLimitExceededError(
                f"Rate limit of {self._policy.limit} per {self._policy.window_seconds}s exceeded",
                retry_after=retry_after,
                key=key,
            )

    def reset(self, key: Optional[str] = None) -> None:
        self._backend.reset(key)


def make_default_limiter() -> RateLimiter:
    """Factory function to create a RateLimiter with MemoryBackend and default policy."""
    return RateLimiter(MemoryBackend(), RatePolicy())
