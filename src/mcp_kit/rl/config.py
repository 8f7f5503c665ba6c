"""Rate limiting configuration and dependency injection."""

from typing import Optional

from pydantic import BaseModel, Field

from mcp_kit.core.config import Settings, get_settings
from .backend import MemoryBackend
from .limiter import RatePolicy, RateLimiter


class RateLimitConfig(BaseModel):
    """Rate limiting configuration model."""

    enabled: bool = Field(default=False, description="Enable rate limiting")
    default_limit: int = Field(default=60, ge=1, le=100000, description="Requests per window")
    default_window: int = Field(default=60, ge=1, le=3600, description="Window in seconds")


def get_rate_limit_config(settings: Optional[Settings] = None) -> RateLimitConfig:
    """Get rate limiting configuration from settings."""
    settings = settings or get_settings()

    return RateLimitConfig(
        enabled=settings.ENABLE_RATE_LIMITING,
        default_limit=settings.RATE_LIMIT_DEFAULT_LIMIT,
        default_window=settings.RATE_LIMIT_DEFAULT_WINDOW,
    )


def create_rate_limiter(config: Optional[RateLimitConfig] = None) -> Optional[RateLimiter]:
    """
    Create rate limiter instance based on configuration.

    Args:
        config: Rate limiting configuration (defaults to settings)

    Returns:
        RateLimiter instance or None if disabled
    """
    if config is None:
        config = get_rate_limit_config()

    if not config.enabled:
        return None

    policy = RatePolicy(
        limit=config.default_limit,
        window_seconds=config.default_window
    )
    return RateLimiter(MemoryBackend(), policy)
