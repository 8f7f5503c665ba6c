"""
Resilience exceptions for MCP Kit.

Raised by the retry and circuit breaker helpers used around upstream calls.
"""

from typing import Any, Dict, Optional


class ResilienceError(Exception):
    """Base exception for retry and circuit breaker errors."""

    def __init__(self, message: str, key: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.key = key
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "key": self.key,
            "context": self.context
        }


class CircuitBreakerOpenError(ResilienceError):
    """
    Raised when a circuit breaker is open and blocking calls.

    Attributes:
        cooldown_remaining: Seconds until the breaker lets a probe through
        failure_rate: Failure rate in the rolling window when the call was blocked
        total_failures: Failures recorded by the breaker so far
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        cooldown_remaining: float = 0,
        failure_rate: float = 0,
        total_failures: int = 0,
        last_failure_time: Optional[float] = None
    ):
        super().__init__(message, key)
        self.cooldown_remaining = cooldown_remaining
        self.failure_rate = failure_rate
        self.total_failures = total_failures
        self.last_failure_time = last_failure_time

    @property
    def retry_after(self) -> float:
        return self.cooldown_remaining

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "error": "circuit_breaker_open",
            "cooldown_remaining_seconds": self.cooldown_remaining,
            "failure_rate": self.failure_rate,
            "total_failures": self.total_failures,
            "retry_after_ms": int(self.cooldown_remaining * 1000)
        })
        return data


class CircuitBreakerConfigurationError(ResilienceError):
    """Raised when circuit breaker settings are inconsistent."""

    def __init__(self, message: str, config_field: Optional[str] = None, provided_value: Optional[Any] = None):
        super().__init__(message)
        self.config_field = config_field
        self.provided_value = provided_value


class RetryConfigurationError(ResilienceError):
    """Raised when a retry policy is invalid."""

    def __init__(self, message: str, config_field: Optional[str] = None, provided_value: Optional[Any] = None):
        super().__init__(message)
        self.config_field = config_field
        self.provided_value = provided_value
