"""Rate limiting backend implementations."""

import math
import time
import threading
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from .exceptions import RateLimitBackendError

logger = logging.getLogger(__name__)


class LimiterBackend(ABC):
    """Abstract base class for rate limiting backends."""

    @abstractmethod
    def incr_and_get(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """
        Atomically increment the counter for `key` in the current fixed window.
        Return (count, ttl_remaining_seconds).
        window_id = floor(now / window_seconds)
        ttl_remaining_seconds = ceil(((window_id+1)*window_seconds) - now), at least 1
        """

    @abstractmethod
    def reset(self, key: Optional[str] = None) -> None:
        """Forget counters for one key, or for every key when `key` is None."""


class MemoryBackend(LimiterBackend):
    """Thread-safe in-memory fixed-window backend."""

    def __init__(self, clock: Callable[[], float] = time.time):
        # (key, window_seconds, window_id) -> count
        self._counters: Dict[Tuple[str, int, int], int] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._last_window: Dict[int, int] = {}

    def incr_and_get(self, key: str, window_seconds: int) -> Tuple[int, int]:
        if window_seconds < 1:
            raise RateLimitBackendError("window_seconds must be >= 1", str(window_seconds))
        try:
            with self._lock:
                now = self._clock()
                window_id = int(now // window_seconds)

                window_end = (window_id + 1) * window_seconds
                ttl_remaining = max(1, math.ceil(window_end - now))

                counter_key = (key, window_seconds, window_id)
                new_count = self._counters.get(counter_key, 0) + 1
                self._counters[counter_key] = new_count

                self._cleanup_old_windows(window_id, window_seconds)

                return new_count, ttl_remaining
        except Exception as e:
            logger.error(
                "Memory backend error during incr_and_get",
                extra={"key": key, "window_seconds": window_seconds, "error": str(e)},
                exc_info=True
            )
            raise RateLimitBackendError(f"Memory backend failed: {str(e)}", str(e))

    def _cleanup_old_windows(self, current_window_id: int, window_seconds: int) -> None:
        """Drop counters from finished windows, once per window change."""
        if self._last_window.get(window_seconds) == current_window_id:
            return
        self._last_window[window_seconds] = current_window_id
        stale = [
            k for k in self._counters
            if k[1] == window_seconds and k[2] < current_window_id
        ]
        for k in stale:
            del self._counters[k]

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._counters.clear()
                return
            for k in [k for k in self._counters if k[0] == key]:
                del self._counters[k]
