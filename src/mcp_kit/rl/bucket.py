"""
Token bucket for pacing outbound calls.

Unlike the fixed-window limiter, which rejects inbound requests, the bucket
is used on the client side: ``acquire`` waits until the upstream API's
budget allows another call.
"""

import asyncio
import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Classic token bucket.

    Tokens refill continuously at ``rate`` per second up to ``capacity``.
    The bucket starts full.
    """

    def __init__(self, rate: float, capacity: float, clock: Callable[[], float] = time.monotonic):
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.rate = float(rate)
        self.capacity = float(capacity)
        self._clock = clock
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def try_acquire(self, tokens: float = 1) -> bool:
        """Take tokens if available right now."""
        self._check(tokens)
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    def wait_time(self, tokens: float = 1) -> float:
        """Seconds until `tokens` would be available (0 when they already are)."""
        self._check(tokens)
        with self._lock:
            self._refill()
            missing = tokens - self._tokens
            return 0.0 if missing <= 0 else missing / self.rate

    async def acquire(self, tokens: float = 1) -> float:
        """
        Wait until tokens are available and take them.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while not self.try_acquire(tokens):
            delay = self.wait_time(tokens)
            logger.debug("Token bucket throttling", extra={"delay": delay, "tokens": tokens})
            await asyncio.sleep(delay)
            waited += delay
        return waited

    def _check(self, tokens: float) -> None:
        if tokens <= 0:
            raise ValueError("tokens must be > 0")
        if tokens > self.capacity:
            raise ValueError(f"cannot acquire {tokens} tokens from a bucket of capacity {self.capacity}")
