"""Rate limiting module."""

from .keys import build_rl_key
from .backend import LimiterBackend, MemoryBackend
from .limiter import RatePolicy, RateLimiter, make_default_limiter
from .bucket import TokenBucket
from .middleware import RateLimitMiddleware
from .config import RateLimitConfig, get_rate_limit_config, create_rate_limiter
from .exceptions import (
    RateLimitError,
    RateLimitExceededError,
    RateLimitConfigurationError,
    RateLimitBackendError
)

__all__ = [
    "build_rl_key",
    "LimiterBackend",
    "MemoryBackend",
    "RatePolicy",
    "RateLimiter",
    "make_default_limiter",
    "TokenBucket",
    "RateLimitMiddleware",
    "RateLimitConfig",
    "get_rate_limit_config",
    "create_rate_limiter",
    "RateLimitError",
    "RateLimitExceededError",
    "RateLimitConfigurationError",
    "RateLimitBackendError"
]
