"""
Resilience helpers for upstream calls: retry with backoff and circuit breakers.
"""

from .retry import RetryPolicy, RetryState, retry
from .breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState, is_client_error
from .manager import CircuitBreakerManager
from .exceptions import (
    ResilienceError,
    CircuitBreakerOpenError,
    CircuitBreakerConfigurationError,
    RetryConfigurationError
)

__all__ = [
    "RetryPolicy",
    "RetryState",
    "retry",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "is_client_error",
    "CircuitBreakerManager",
    "ResilienceError",
    "CircuitBreakerOpenError",
    "CircuitBreakerConfigurationError",
    "RetryConfigurationError"
]
