"""
Circuit breaker manager.

Keeps one breaker per upstream key (typically an integration id) and runs
calls through it.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState
from .exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitBreakerManager:
    """
    Registry of circuit breakers keyed by upstream.

    Usage:
        manager = CircuitBreakerManager()
        manager.set_config("billing", CircuitBreakerConfig(failure_threshold=2))
        data = await manager.check_and_call("billing", client.get, "/invoices")
    """

    def __init__(self, default_config: Optional[CircuitBreakerConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._configs: Dict[str, CircuitBreakerConfig] = {}
        self._lock = asyncio.Lock()
        self.total_protected_calls = 0
        self.total_rejected_calls = 0

    def set_config(self, key: str, config: CircuitBreakerConfig) -> None:
        """Use ``config`` for ``key``; replaces an existing breaker so the change applies."""
        self._configs[key] = config
        if key in self._breakers:
            self._breakers[key] = CircuitBreaker(key, config, clock=self._clock)

    async def get_breaker(self, key: str) -> CircuitBreaker:
        async with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                config = self._configs.get(key, self.default_config)
                breaker = CircuitBreaker(key, config, clock=self._clock)
                self._breakers[key] = breaker
                logger.debug("Created circuit breaker", extra={"breaker": key})
            return breaker

    async def check_and_call(self, key: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Run ``func(*args, **kwargs)`` through the breaker for ``key``.

        Raises:
            CircuitBreakerOpenError: If the breaker is blocking calls
            Exception: Whatever ``func`` raises, after it has been recorded
        """
        breaker = await self.get_breaker(key)
        self.total_protected_calls += 1

        if not await breaker.should_allow_call():
            self.total_rejected_calls += 1
            raise CircuitBreakerOpenError(
                f"Circuit breaker is open for {key}",
                key=key,
                cooldown_remaining=breaker.cooldown_remaining,
                failure_rate=breaker.failure_rate,
                total_failures=breaker.total_failures,
                last_failure_time=breaker.last_failure_time
            )

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            breaker.release_probe()
            raise
        except Exception as e:
            await breaker.record_failure(e)
            raise

        await breaker.record_success()
        return result

    async def get_all_stats(self) -> List[Dict[str, Any]]:
        async with self._lock:
            return [breaker.get_stats() for breaker in self._breakers.values()]

    async def open_breakers(self) -> List[str]:
        async with self._lock:
            return [key for key, b in self._breakers.items() if b.state == CircuitBreakerState.OPEN]

    async def reset_breaker(self, key: str) -> bool:
        """Reset one breaker to CLOSED; False when no breaker exists for ``key``."""
        async with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                return False
            breaker.reset()
            logger.info("Circuit breaker manually reset", extra={"breaker": key})
            return True
