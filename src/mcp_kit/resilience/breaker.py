"""
Circuit breaker for upstream API calls.

States:
- CLOSED: calls flow through
- OPEN: calls fail fast until the cooldown expires
- HALF_OPEN: a limited number of probe calls decide whether to close again

The breaker trips on consecutive failures or on the failure rate over a
rolling window of recent calls. Each failed probe doubles the cooldown up
to ``max_cooldown_seconds``; a successful recovery shrinks it again.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

from mcp_kit.auth.exceptions import AuthenticationError
from mcp_kit.protocol.exceptions import InvalidParamsError, RateLimitedError
from .exceptions import CircuitBreakerConfigurationError

logger = logging.getLogger(__name__)


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds and timings for one breaker."""

    failure_threshold: int = 5
    """Consecutive failures that open the circuit"""

    failure_rate_threshold: float = 0.5
    """Failure rate (0.0-1.0) over the rolling window that opens the circuit"""

    rolling_window_size: int = 20
    """Recent calls considered for the failure rate"""

    min_calls_for_rate: int = 10
    """Calls needed in the window before the failure rate is trusted"""

    base_cooldown_seconds: float = 5.0
    max_cooldown_seconds: float = 60.0
    cooldown_multiplier: float = 2.0

    half_open_max_attempts: int = 3
    """Probe calls let through while half-open"""

    half_open_success_threshold: int = 2
    """Successful probes needed to close the circuit"""

    ignore_errors: Tuple[Type[BaseException], ...] = (
        AuthenticationError,
        InvalidParamsError,
        RateLimitedError,
    )
    """Caller-side errors that never count against the upstream"""

    def __post_init__(self):
        checks = [
            ("failure_threshold", self.failure_threshold >= 1, "must be >= 1"),
            ("failure_rate_threshold", 0.0 <= self.failure_rate_threshold <= 1.0,
             "must be between 0.0 and 1.0"),
            ("rolling_window_size", self.rolling_window_size >= 1, "must be >= 1"),
            ("min_calls_for_rate", self.min_calls_for_rate >= 1, "must be >= 1"),
            ("base_cooldown_seconds", self.base_cooldown_seconds > 0, "must be > 0"),
            ("max_cooldown_seconds", self.max_cooldown_seconds >= self.base_cooldown_seconds,
             "must be >= base_cooldown_seconds"),
            ("cooldown_multiplier", self.cooldown_multiplier >= 1.0, "must be >= 1.0"),
            ("half_open_max_attempts", self.half_open_max_attempts >= 1, "must be >= 1"),
            ("half_open_success_threshold",
             1 <= self.half_open_success_threshold <= self.half_open_max_attempts,
             "must be between 1 and half_open_max_attempts"),
        ]
        for field_name, ok, requirement in checks:
            if not ok:
                raise CircuitBreakerConfigurationError(
                    f"{field_name} {requirement}",
                    config_field=field_name,
                    provided_value=getattr(self, field_name)
                )


def is_client_error(error: BaseException, ignore_errors: Tuple[Type[BaseException], ...] = ()) -> bool:
    """
    True when ``error`` says the request was wrong rather than the upstream broken.

    Errors carrying an HTTP ``status_code`` in the 4xx range are client
    errors, except 408 (request timeout) and 429 (upstream overloaded).
    """
    if ignore_errors and isinstance(error, ignore_errors):
        return True
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int) and 400 <= status_code < 500 and status_code not in (408, 429):
        return True
    return False


class CircuitBreaker:
    """
    Circuit breaker guarding one upstream.

    Usage:
        breaker = CircuitBreaker("github", CircuitBreakerConfig(failure_threshold=3))

        if await breaker.should_allow_call():
            try:
                result = await call_upstream()
            except Exception as e:
                await breaker.record_failure(e)
                raise
            await breaker.record_success()
    """

    def __init__(self, key: str, config: Optional[CircuitBreakerConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.key = key
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = asyncio.Lock()

        self.state = CircuitBreakerState.CLOSED
        self.call_history: deque = deque(maxlen=self.config.rolling_window_size)
        self.consecutive_failures = 0

        self.cooldown_until = 0.0
        self.current_cooldown = self.config.base_cooldown_seconds
        self.half_open_attempts = 0
        self.half_open_successes = 0

        self.total_calls = 0
        self.total_failures = 0
        self.total_successes = 0
        self.total_ignored = 0
        self.total_trips = 0
        self.last_failure_time: Optional[float] = None
        self.last_state_change_time = clock()

    @property
    def cooldown_remaining(self) -> float:
        if self.state != CircuitBreakerState.OPEN:
            return 0.0
        return max(0.0, self.cooldown_until - self._clock())

    @property
    def failure_rate(self) -> float:
        if not self.call_history:
            return 0.0
        return sum(1 for ok in self.call_history if not ok) / len(self.call_history)

    async def should_allow_call(self) -> bool:
        """Decide whether a call may proceed, moving OPEN to HALF_OPEN once the cooldown has passed."""
        async with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if self._clock() < self.cooldown_until:
                    logger.debug(
                        "Circuit breaker blocking call",
                        extra={"breaker": self.key, "cooldown_remaining": self.cooldown_remaining}
                    )
                    return False
                self._transition(CircuitBreakerState.HALF_OPEN)

            if self.state == CircuitBreakerState.HALF_OPEN:
                if self.half_open_attempts >= self.config.half_open_max_attempts:
                    return False
                self.half_open_attempts += 1

            return True

    async def record_success(self) -> None:
        async with self._lock:
            self.total_calls += 1
            self.total_successes += 1
            self.call_history.append(True)
            self.consecutive_failures = 0

            if self.state == CircuitBreakerState.HALF_OPEN:
                self.half_open_successes += 1
                if self.half_open_successes >= self.config.half_open_success_threshold:
                    self.current_cooldown = max(
                        self.config.base_cooldown_seconds,
                        self.current_cooldown / self.config.cooldown_multiplier
                    )
                    self._transition(CircuitBreakerState.CLOSED)

    def release_probe(self) -> None:
        """Give back a half-open probe slot for a call that never finished."""
        if self.state == CircuitBreakerState.HALF_OPEN:
            self.half_open_attempts = max(0, self.half_open_attempts - 1)

    async def record_failure(self, error: BaseException) -> None:
        """Count a failed call; client errors are recorded but never trip the breaker."""
        async with self._lock:
            self.total_calls += 1

            if is_client_error(error, self.config.ignore_errors):
                self.total_ignored += 1
                # The upstream answered, which says it is alive
                if self.state == CircuitBreakerState.HALF_OPEN:
                    self.half_open_attempts = max(0, self.half_open_attempts - 1)
                logger.debug(
                    "Circuit breaker ignoring client error",
                    extra={"breaker": self.key, "error_type": type(error).__name__}
                )
                return

            self.total_failures += 1
            self.last_failure_time = self._clock()
            self.call_history.append(False)
            self.consecutive_failures += 1

            if self.state == CircuitBreakerState.HALF_OPEN:
                self.current_cooldown = min(
                    self.current_cooldown * self.config.cooldown_multiplier,
                    self.config.max_cooldown_seconds
                )
                self._open()
            elif self.state == CircuitBreakerState.CLOSED and self._should_trip():
                self._open()

            logger.warning(
                "Circuit breaker recorded failure",
                extra={
                    "breaker": self.key,
                    "error_type": type(error).__name__,
                    "error": str(error),
                    "consecutive_failures": self.consecutive_failures,
                    "state": self.state.value
                }
            )

    def _should_trip(self) -> bool:
        if self.consecutive_failures >= self.config.failure_threshold:
            return True
        sample = min(self.config.min_calls_for_rate, self.config.rolling_window_size)
        return len(self.call_history) >= sample and self.failure_rate >= self.config.failure_rate_threshold

    def _open(self) -> None:
        self.total_trips += 1
        self.cooldown_until = self._clock() + self.current_cooldown
        self._transition(CircuitBreakerState.OPEN)

    def _transition(self, new_state: CircuitBreakerState) -> None:
        old_state = self.state
        self.state = new_state
        self.last_state_change_time = self._clock()
        self.half_open_attempts = 0
        self.half_open_successes = 0
        if new_state == CircuitBreakerState.CLOSED:
            self.consecutive_failures = 0

        log = logger.warning if new_state == CircuitBreakerState.OPEN else logger.info
        log(
            "Circuit breaker state change",
            extra={
                "breaker": self.key,
                "from_state": old_state.value,
                "to_state": new_state.value,
                "cooldown_seconds": self.current_cooldown,
                "failure_rate": round(self.failure_rate, 3)
            }
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "state": self.state.value,
            "total_calls": self.total_calls,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "total_ignored": self.total_ignored,
            "total_trips": self.total_trips,
            "consecutive_failures": self.consecutive_failures,
            "failure_rate": self.failure_rate,
            "cooldown_remaining_seconds": self.cooldown_remaining,
            "current_cooldown_seconds": self.current_cooldown,
            "last_failure_time": self.last_failure_time,
        }

    def reset(self) -> None:
        """Return to CLOSED with empty history."""
        self.call_history.clear()
        self.current_cooldown = self.config.base_cooldown_seconds
        self.cooldown_until = 0.0
        if self.state != CircuitBreakerState.CLOSED:
            self._transition(CircuitBreakerState.CLOSED)
        self.consecutive_failures = 0
