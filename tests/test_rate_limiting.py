"""Tests for rate limiting functionality."""

import json
import pytest
from unittest.mock import Mock, AsyncMock

from mcp_kit.rl import (
    RateLimiter, RatePolicy, MemoryBackend, TokenBucket,
    build_rl_key, RateLimitMiddleware,
    RateLimitConfig, create_rate_limiter
)
from mcp_kit.rl.exceptions import (
    RateLimitBackendError,
    RateLimitConfigurationError,
    RateLimitExceededError
)
from mcp_kit.protocol.exceptions import RATE_LIMITED


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimitKey:
    """Test rate limiting key generation."""

    def test_build_rl_key_basic(self):
        """Test basic key generation."""
        key = build_rl_key(client_id="client123", server="weather", method="tools/call:forecast")
        assert key == "rl:client:client123|server:weather|method:tools/call:forecast"

    def test_build_rl_key_normalization(self):
        """Server and method are lower-cased, client ids keep their case."""
        key = build_rl_key(client_id=" Client123 ", server=" WEATHER ", method=" Tools/List ")
        assert key == "rl:client:Client123|server:weather|method:tools/list"

    def test_build_rl_key_delimiter_collision(self):
        """Test delimiter collision handling."""
        key = build_rl_key(client_id="client|with|pipes", server="srv|1", method="ping|x")
        assert key == "rl:client:client_with_pipes|server:srv_1|method:ping_x"


class TestMemoryBackend:
    """Test memory backend functionality."""

    def test_memory_backend_single_increment(self):
        """Test single increment operation."""
        backend = MemoryBackend()
        count, ttl = backend.incr_and_get("test_key", 60)

        assert count == 1
        assert 0 < ttl <= 60

    def test_memory_backend_multiple_increments(self):
        """Test multiple increments in same window."""
        clock = FakeClock(10)
        backend = MemoryBackend(clock=clock)

        count1, ttl1 = backend.incr_and_get("test_key", 60)
        clock.now = 15
        count2, ttl2 = backend.incr_and_get("test_key", 60)

        assert count1 == 1
        assert count2 == 2
        assert ttl1 == 50
        assert ttl2 == 45

    def test_memory_backend_different_keys(self):
        """Test that different keys have separate counters."""
        backend = MemoryBackend()

        count1, _ = backend.incr_and_get("key1", 60)
        count2, _ = backend.incr_and_get("key2", 60)

        assert count1 == 1
        assert count2 == 1

    def test_memory_backend_window_separation(self):
        """Test that different windows have separate counters."""
        clock = FakeClock(30)
        backend = MemoryBackend(clock=clock)

        count1, _ = backend.incr_and_get("test_key", 60)
        assert count1 == 1

        clock.now = 90
        count2, _ = backend.incr_and_get("test_key", 60)
        assert count2 == 1  # Reset in new window

    def test_memory_backend_window_sizes_do_not_interfere(self):
        """Cleanup for one window size leaves counters of another intact."""
        clock = FakeClock(30)
        backend = MemoryBackend(clock=clock)

        backend.incr_and_get("test_key", 3600)
        clock.now = 90
        backend.incr_and_get("test_key", 60)
        count, _ = backend.incr_and_get("test_key", 3600)

        assert count == 2

    def test_memory_backend_ttl_rounds_up(self):
        """TTL is rounded up and never below one second."""
        clock = FakeClock(59.5)
        backend = MemoryBackend(clock=clock)

        _, ttl = backend.incr_and_get("test_key", 60)
        assert ttl == 1

    def test_memory_backend_rejects_bad_window(self):
        backend = MemoryBackend()
        with pytest.raises(RateLimitBackendError):
            backend.incr_and_get("test_key", 0)

    def test_memory_backend_reset(self):
        backend = MemoryBackend()
        backend.incr_and_get("a", 60)
        backend.incr_and_get("b", 60)

        backend.reset("a")
        assert backend.incr_and_get("a", 60)[0] == 1
        assert backend.incr_and_get("b", 60)[0] == 2

        backend.reset()
        assert backend.incr_and_get("b", 60)[0] == 1


class TestRateLimiter:
    """Test rate limiter functionality."""

    def test_rate_limiter_allows_under_limit(self):
        """Test that requests under limit are allowed."""
        limiter = RateLimiter(MemoryBackend(), RatePolicy(limit=5, window_seconds=60))

        for _ in range(5):
            allowed, retry_after = limiter.check_and_consume("test_key")
            assert allowed is True
            assert retry_after == 0

    def test_rate_limiter_blocks_over_limit(self):
        """Test that requests over limit are blocked."""
        limiter = RateLimiter(MemoryBackend(), RatePolicy(limit=5, window_seconds=60))

        for _ in range(5):
            limiter.check_and_consume("test_key")

        allowed, retry_after = limiter.check_and_consume("test_key")
        assert allowed is False
        assert 0 < retry_after <= 60

    def test_rate_limiter_client_server_method_isolation(self):
        """Test that rate limits are isolated by client, server, and method."""
        limiter = RateLimiter(MemoryBackend(), RatePolicy(limit=2, window_seconds=60))

        key1 = build_rl_key(client_id="client1", server="srv", method="tools/call:a")
        assert limiter.check_and_consume(key1)[0] is True
        assert limiter.check_and_consume(key1)[0] is True
        assert limiter.check_and_consume(key1)[0] is False

        key2 = build_rl_key(client_id="client1", server="srv", method="tools/call:b")
        assert limiter.check_and_consume(key2)[0] is True

        key3 = build_rl_key(client_id="client2", server="srv", method="tools/call:a")
        assert limiter.check_and_consume(key3)[0] is True

    def test_rate_limiter_allows_again_in_next_window(self):
        clock = FakeClock(0)
        limiter = RateLimiter(MemoryBackend(clock=clock), RatePolicy(limit=1, window_seconds=10))

        assert limiter.check_and_consume("k") == (True, 0)
        assert limiter.check_and_consume("k") == (False, 10)

        clock.now = 10
        assert limiter.check_and_consume("k") == (True, 0)

    def test_enforce_raises_when_exceeded(self):
        limiter = RateLimiter(MemoryBackend(), RatePolicy(limit=1, window_seconds=60))
        limiter.enforce("k")

        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.enforce("k")
        assert exc_info.value.retry_after > 0
        assert exc_info.value.code == RATE_LIMITED
        assert exc_info.value.key == "k"

    def test_policy_validation(self):
        with pytest.raises(RateLimitConfigurationError):
            RatePolicy(limit=0)
        with pytest.raises(RateLimitConfigurationError):
            RatePolicy(window_seconds=0)


class TestRateLimitConfig:
    """Test rate limit configuration."""

    def test_rate_limit_config_defaults(self):
        """Test default configuration values."""
        config = RateLimitConfig()

        assert config.enabled is False
        assert config.default_limit == 60
        assert config.default_window == 60

    def test_create_rate_limiter_memory_backend(self):
        """Test creating rate limiter with memory backend."""
        config = RateLimitConfig(enabled=True, default_limit=3, default_window=30)

        limiter = create_rate_limiter(config)

        assert limiter is not None
        assert isinstance(limiter._backend, MemoryBackend)
        assert limiter.policy.limit == 3
        assert limiter.policy.window_seconds == 30

    def test_create_rate_limiter_disabled(self):
        """Test that disabled config returns None."""
        assert create_rate_limiter(RateLimitConfig(enabled=False)) is None


class TestRateLimitMiddleware:
    """Test rate limiting middleware."""

    @pytest.fixture
    def mock_request(self):
        """Create a mock FastAPI request carrying a tools/call message."""
        request = Mock()
        request.method = "POST"
        request.url.path = "/mcp"
        request.state.user_id = "test_user"

        body_data = {
            "jsonrpc": "2.0",
            "id": 7,
            "method": "tools/call",
            "params": {"name": "test_tool", "arguments": {"param1": "value1"}}
        }
        request.body = AsyncMock(return_value=json.dumps(body_data).encode())
        return request

    @pytest.fixture
    def rate_limiter(self):
        """Create a rate limiter for testing."""
        return RateLimiter(MemoryBackend(), RatePolicy(limit=2, window_seconds=60))

    @pytest.fixture
    def middleware(self, rate_limiter):
        """Create middleware with test rate limiter."""
        return RateLimitMiddleware(Mock(), limiter=rate_limiter, server_name="test")

    @pytest.mark.asyncio
    async def test_middleware_allows_under_limit(self, middleware, mock_request):
        """Test middleware allows requests under rate limit."""
        call_next = AsyncMock(return_value="success")

        result = await middleware.dispatch(mock_request, call_next)
        assert result == "success"
        call_next.assert_called_once()

    @pytest.mark.asyncio
    async def test_middleware_blocks_over_limit(self, middleware, mock_request):
        """Test middleware blocks requests over rate limit."""
        call_next = AsyncMock(return_value="success")

        await middleware.dispatch(mock_request, call_next)
        await middleware.dispatch(mock_request, call_next)
        response = await middleware.dispatch(mock_request, call_next)

        assert response.status_code == 429
        assert int(response.headers["retry-after"]) > 0
        body = json.loads(response.body)
        assert body["id"] == 7
        assert body["error"]["code"] == RATE_LIMITED
        assert body["error"]["data"]["retry_after"] > 0
        assert call_next.call_count == 2

    @pytest.mark.asyncio
    async def test_middleware_scopes_by_tool(self, middleware, mock_request, rate_limiter):
        """Each tool gets its own budget."""
        call_next = AsyncMock(return_value="success")
        for _ in range(2):
            await middleware.dispatch(mock_request, call_next)

        other = {"jsonrpc": "2.0", "id": 8, "method": "tools/call", "params": {"name": "other_tool"}}
        mock_request.body = AsyncMock(return_value=json.dumps(other).encode())

        result = await middleware.dispatch(mock_request, call_next)
        assert result == "success"

    @pytest.mark.asyncio
    async def test_middleware_skips_non_post(self, middleware):
        """Test middleware skips non-POST requests."""
        request = Mock()
        request.method = "GET"
        call_next = AsyncMock(return_value="success")

        result = await middleware.dispatch(request, call_next)
        assert result == "success"
        call_next.assert_called_once()

    @pytest.mark.asyncio
    async def test_middleware_skips_wrong_path(self, middleware):
        """Test middleware skips requests to other paths."""
        request = Mock()
        request.method = "POST"
        request.url.path = "/health"
        call_next = AsyncMock(return_value="success")

        result = await middleware.dispatch(request, call_next)
        assert result == "success"
        call_next.assert_called_once()

    @pytest.mark.asyncio
    async def test_middleware_disabled_when_no_limiter(self):
        """Test middleware is disabled when no limiter provided."""
        middleware = RateLimitMiddleware(Mock(), limiter=None)

        request = Mock()
        request.method = "POST"
        request.url.path = "/mcp"
        call_next = AsyncMock(return_value="success")

        result = await middleware.dispatch(request, call_next)
        assert result == "success"
        call_next.assert_called_once()

    def test_extract_call_scopes(self):
        extract = RateLimitMiddleware._extract_call
        assert extract(b"") == (None, "empty")
        assert extract(b"{not json") == (None, "unparseable")
        assert extract(b"[]") == (None, "batch")
        assert extract(b'{"id": 1, "method": "ping"}') == (1, "ping")
        assert extract(b'{"id": 2}') == (2, "invalid")


class TestTokenBucket:
    """Test outbound pacing."""

    def test_starts_full_and_drains(self):
        bucket = TokenBucket(rate=1, capacity=2, clock=FakeClock(0))

        assert bucket.try_acquire() is True
        assert bucket.try_acquire() is True
        assert bucket.try_acquire() is False

    def test_refills_over_time(self):
        clock = FakeClock(0)
        bucket = TokenBucket(rate=2, capacity=2, clock=clock)
        bucket.try_acquire(2)

        assert bucket.wait_time() == pytest.approx(0.5)
        clock.now = 0.5
        assert bucket.try_acquire() is True

    def test_never_exceeds_capacity(self):
        clock = FakeClock(0)
        bucket = TokenBucket(rate=10, capacity=3, clock=clock)
        clock.now = 100
        assert bucket.available == 3

    def test_rejects_more_than_capacity(self):
        bucket = TokenBucket(rate=1, capacity=2)
        with pytest.raises(ValueError):
            bucket.try_acquire(3)
        with pytest.raises(ValueError):
            bucket.try_acquire(0)

    @pytest.mark.asyncio
    async def test_acquire_waits_for_refill(self):
        bucket = TokenBucket(rate=100, capacity=1)
        assert await bucket.acquire() == 0.0

        waited = await bucket.acquire()
        assert waited > 0
