"""
Retry with exponential backoff.

``retry`` wraps sync or async callables. Delays grow geometrically from
``initial_delay`` up to ``max_delay`` with optional jitter; an exception
carrying a ``retry_after`` attribute (seconds) overrides the computed delay.
"""

import asyncio
import dataclasses
import functools
import inspect
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from .exceptions import RetryConfigurationError

logger = logging.getLogger(__name__)

ExceptionTypes = Tuple[Type[BaseException], ...]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff parameters and the exception filter for retries.

    ``give_up_on`` is checked before ``retry_on``, so an exception matching
    both is never retried.
    """

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1
    retry_on: ExceptionTypes = (Exception,)
    give_up_on: ExceptionTypes = ()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise RetryConfigurationError(
                "max_attempts must be >= 1",
                config_field="max_attempts",
                provided_value=self.max_attempts
            )
        if self.initial_delay <= 0:
            raise RetryConfigurationError(
                "initial_delay must be > 0",
                config_field="initial_delay",
                provided_value=self.initial_delay
            )
        if self.max_delay < self.initial_delay:
            raise RetryConfigurationError(
                "max_delay must be >= initial_delay",
                config_field="max_delay",
                provided_value=self.max_delay
            )
        if self.multiplier < 1:
            raise RetryConfigurationError(
                "multiplier must be >= 1",
                config_field="multiplier",
                provided_value=self.multiplier
            )
        if not 0 <= self.jitter <= 1:
            raise RetryConfigurationError(
                "jitter must be between 0 and 1",
                config_field="jitter",
                provided_value=self.jitter
            )

    def compute_delay(self, attempt: int) -> float:
        """Backoff before the retry that follows failed attempt number ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.initial_delay * self.multiplier ** (attempt - 1))
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    def delay_for(self, attempt: int, error: BaseException) -> float:
        retry_after = getattr(error, "retry_after", None)
        if isinstance(retry_after, (int, float)) and retry_after >= 0:
            return min(float(retry_after), self.max_delay)
        return self.compute_delay(attempt)

    def should_retry(self, error: BaseException) -> bool:
        if self.give_up_on and isinstance(error, self.give_up_on):
            return False
        return isinstance(error, self.retry_on)


@dataclass
class RetryState:
    """Passed to ``on_retry`` before each backoff sleep."""
    func_name: str
    attempt: int
    delay: float
    error: BaseException


def _before_retry(policy: RetryPolicy, func_name: str, attempt: int, error: BaseException,
                  on_retry: Optional[Callable[[RetryState], Any]]) -> Optional[float]:
    """Return the delay to sleep, or None when the error must propagate."""
    if attempt >= policy.max_attempts or not policy.should_retry(error):
        if attempt > 1:
            logger.warning(
                "Giving up after retries",
                extra={
                    "function": func_name,
                    "attempts": attempt,
                    "error_type": type(error).__name__,
                    "error": str(error)
                }
            )
        return None

    delay = policy.delay_for(attempt, error)
    logger.info(
        "Retrying after failure",
        extra={
            "function": func_name,
            "attempt": attempt,
            "max_attempts": policy.max_attempts,
            "delay": round(delay, 3),
            "error_type": type(error).__name__,
            "error": str(error)
        }
    )
    if on_retry is not None:
        on_retry(RetryState(func_name=func_name, attempt=attempt, delay=delay, error=error))
    return delay


def retry(
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Optional[Callable[[float], Any]] = None,
    on_retry: Optional[Callable[[RetryState], Any]] = None,
    **overrides
):
    """
    Decorator retrying a callable according to ``policy``.

    Args:
        policy: Backoff policy (defaults to ``RetryPolicy()``)
        sleep: Replacement for ``asyncio.sleep`` / ``time.sleep``; must return an
            awaitable when wrapping a coroutine function
        on_retry: Called with a ``RetryState`` before every backoff
        **overrides: Field overrides applied to the policy

    Usage:
        @retry(max_attempts=5, retry_on=(httpx.TransportError,))
        async def fetch():
            ...
    """
    policy = policy or RetryPolicy()
    if overrides:
        policy = dataclasses.replace(policy, **overrides)

    def decorator(func):
        name = getattr(func, "__qualname__", repr(func))

        if inspect.iscoroutinefunction(func):
            async_sleep: Callable[[float], Awaitable[Any]] = sleep or asyncio.sleep

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                attempt = 0
                while True:
                    attempt += 1
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        delay = _before_retry(policy, name, attempt, e, on_retry)
                        if delay is None:
                            raise
                    await async_sleep(delay)

            async_wrapper.retry_policy = policy
            return async_wrapper

        sync_sleep = sleep or time.sleep

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    delay = _before_retry(policy, name, attempt, e, on_retry)
                    if delay is None:
                        raise
                sync_sleep(delay)

        wrapper.retry_policy = policy
        return wrapper

    return decorator
