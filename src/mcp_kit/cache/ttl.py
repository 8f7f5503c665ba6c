"""
In-memory TTL cache with LRU eviction.

Used by REST integrations to cache GET responses and available to tools
directly through the ``cached`` decorator.
"""

import asyncio
import functools
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:
    """
    Bounded mapping whose entries expire after a time-to-live.

    Expired entries behave as missing and are dropped when touched. When the
    cache is full the least recently used entry is evicted.
    """

    def __init__(self, max_size: int = 1024, default_ttl: float = 300,
                 clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._data: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()
        # key -> [lock, callers holding or waiting on it]
        self._key_locks: Dict[Hashable, list] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def _lookup(self, key: Hashable) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return _MISSING
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return _MISSING
        self._data.move_to_end(key)
        return value

    def get(self, key: Hashable, default: Any = None) -> Any:
        value = self._lookup(key)
        if value is _MISSING:
            self.misses += 1
            return default
        self.hits += 1
        return value

    def __contains__(self, key: Hashable) -> bool:
        return self._lookup(key) is not _MISSING

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value``; a ttl of zero or less means do not cache."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            self._data.pop(key, None)
            return

        self._data[key] = (value, self._clock() + ttl)
        self._data.move_to_end(key)
        while len(self._data) > self.max_size:
            evicted, _ = self._data.popitem(last=False)
            self.evictions += 1
            logger.debug("Cache evicted entry", extra={"key": str(evicted)})

    def delete(self, key: Hashable) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._data)

    def stats(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": len(self),
            "max_size": self.max_size,
        }

    async def get_or_set(self, key: Hashable, factory: Callable[[], Awaitable[Any]],
                         ttl: Optional[float] = None) -> Any:
        """
        Return the cached value or compute it with ``factory``.

        Concurrent callers for the same key wait on one factory call. A
        failing factory caches nothing, so the next waiter calls it again.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        entry = self._key_locks.get(key)
        if entry is None:
            entry = self._key_locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                value = self._lookup(key)
                if value is not _MISSING:
                    return value
                value = await factory()
                self.set(key, value, ttl)
                return value
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._key_locks[key]


def make_key(func: Callable, args: tuple, kwargs: dict) -> str:
    """Default cache key: qualified name plus a stable JSON rendering of the arguments."""
    payload = json.dumps([list(args), kwargs], sort_keys=True, default=repr, separators=(",", ":"))
    return f"{func.__module__}.{func.__qualname__}:{payload}"


def cached(cache: TTLCache, ttl: Optional[float] = None,
           key_builder: Optional[Callable[..., Hashable]] = None):
    """
    Cache results of an async function.

    Args:
        cache: Cache to store results in
        ttl: Entry lifetime; defaults to the cache's ``default_ttl``
        key_builder: Called with the function's arguments to build the key

    Usage:
        @cached(cache, ttl=60)
        async def lookup_user(user_id: str) -> dict:
            ...
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if key_builder is not None:
                key = key_builder(*args, **kwargs)
            else:
                key = make_key(func, args, kwargs)
            return await cache.get_or_set(key, lambda: func(*args, **kwargs), ttl)

        wrapper.cache = cache
        return wrapper

    return decorator
