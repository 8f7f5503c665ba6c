"""In-memory caching for tool and upstream results."""

from .ttl import TTLCache, cached, make_key

__all__ = [
    "TTLCache",
    "cached",
    "make_key"
]
