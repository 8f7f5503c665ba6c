"""Tests for circuit breakers and the breaker manager."""

import asyncio

import pytest

from mcp_kit.protocol.exceptions import InvalidParamsError, UpstreamError
from mcp_kit.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerConfigurationError,
    CircuitBreakerManager,
    CircuitBreakerOpenError,
    CircuitBreakerState,
)
from mcp_kit.resilience.breaker import is_client_error


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return CircuitBreakerConfig(
        failure_threshold=3,
        min_calls_for_rate=100,
        base_cooldown_seconds=10,
        max_cooldown_seconds=40,
        half_open_max_attempts=2,
        half_open_success_threshold=2,
    )


@pytest.fixture
def breaker(config, clock):
    return CircuitBreaker("upstream", config, clock=clock)


async def fail(breaker, times=1, error=None):
    for _ in range(times):
        await breaker.record_failure(error or UpstreamError("boom", status_code=502))


class TestCircuitBreakerConfig:
    """Test configuration validation."""

    @pytest.mark.parametrize("kwargs", [
        {"failure_threshold": 0},
        {"failure_rate_threshold": 1.5},
        {"base_cooldown_seconds": 0},
        {"base_cooldown_seconds": 30, "max_cooldown_seconds": 10},
        {"cooldown_multiplier": 0.5},
        {"half_open_max_attempts": 1, "half_open_success_threshold": 2},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(CircuitBreakerConfigurationError):
            CircuitBreakerConfig(**kwargs)


class TestClientErrors:
    """Test which errors count against the upstream."""

    def test_status_codes(self):
        assert is_client_error(UpstreamError("x", status_code=404)) is True
        assert is_client_error(UpstreamError("x", status_code=408)) is False
        assert is_client_error(UpstreamError("x", status_code=429)) is False
        assert is_client_error(UpstreamError("x", status_code=503)) is False
        assert is_client_error(ConnectionError()) is False

    def test_ignore_list(self):
        assert is_client_error(InvalidParamsError("bad"), (InvalidParamsError,)) is True


class TestCircuitBreaker:
    """Test state transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_consecutive_failures(self, breaker):
        await fail(breaker, 2)
        assert breaker.state == CircuitBreakerState.CLOSED

        await fail(breaker)
        assert breaker.state == CircuitBreakerState.OPEN
        assert breaker.total_trips == 1
        assert await breaker.should_allow_call() is False

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, breaker):
        await fail(breaker, 2)
        await breaker.record_success()
        await fail(breaker, 2)

        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_on_failure_rate(self, clock):
        config = CircuitBreakerConfig(
            failure_threshold=100,
            failure_rate_threshold=0.5,
            rolling_window_size=4,
            min_calls_for_rate=4,
        )
        breaker = CircuitBreaker("rate", config, clock=clock)

        await breaker.record_success()
        await fail(breaker)
        await breaker.record_success()
        assert breaker.state == CircuitBreakerState.CLOSED

        await fail(breaker)
        assert breaker.state == CircuitBreakerState.OPEN

    @pytest.mark.asyncio
    async def test_client_errors_do_not_trip(self, breaker):
        await fail(breaker, 10, error=UpstreamError("not found", status_code=404))

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.total_ignored == 10
        assert breaker.total_failures == 0

    @pytest.mark.asyncio
    async def test_half_open_after_cooldown(self, breaker, clock):
        await fail(breaker, 3)
        assert breaker.cooldown_remaining == 10

        clock.advance(10)
        assert await breaker.should_allow_call() is True
        assert breaker.state == CircuitBreakerState.HALF_OPEN

        assert await breaker.should_allow_call() is True
        # Probe budget exhausted
        assert await breaker.should_allow_call() is False

    @pytest.mark.asyncio
    async def test_half_open_closes_after_successful_probes(self, breaker, clock):
        await fail(breaker, 3)
        clock.advance(10)

        await breaker.should_allow_call()
        await breaker.record_success()
        assert breaker.state == CircuitBreakerState.HALF_OPEN

        await breaker.should_allow_call()
        await breaker.record_success()
        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_failed_probe_doubles_cooldown(self, breaker, clock):
        await fail(breaker, 3)
        clock.advance(10)
        await breaker.should_allow_call()

        await fail(breaker)
        assert breaker.state == CircuitBreakerState.OPEN
        assert breaker.current_cooldown == 20

        clock.advance(20)
        await breaker.should_allow_call()
        await fail(breaker)
        assert breaker.current_cooldown == 40

        clock.advance(40)
        await breaker.should_allow_call()
        await fail(breaker)
        assert breaker.current_cooldown == 40

    @pytest.mark.asyncio
    async def test_recovery_shrinks_cooldown(self, breaker, clock):
        await fail(breaker, 3)
        clock.advance(10)
        await breaker.should_allow_call()
        await fail(breaker)
        assert breaker.current_cooldown == 20

        clock.advance(20)
        for _ in range(2):
            await breaker.should_allow_call()
            await breaker.record_success()

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.current_cooldown == 10

    @pytest.mark.asyncio
    async def test_client_error_returns_probe(self, breaker, clock):
        await fail(breaker, 3)
        clock.advance(10)

        await breaker.should_allow_call()
        await breaker.should_allow_call()
        await fail(breaker, error=UpstreamError("bad request", status_code=400))

        assert breaker.state == CircuitBreakerState.HALF_OPEN
        assert await breaker.should_allow_call() is True

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        await fail(breaker, 3)
        breaker.reset()

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.failure_rate == 0.0
        assert await breaker.should_allow_call() is True


class TestCircuitBreakerManager:
    """Test calls routed through the manager."""

    @pytest.fixture
    def manager(self, config, clock):
        return CircuitBreakerManager(default_config=config, clock=clock)

    @pytest.mark.asyncio
    async def test_passes_results_through(self, manager):
        async def add(a, b):
            return a + b

        assert await manager.check_and_call("math", add, 1, b=2) == 3
        stats = await manager.get_all_stats()
        assert stats[0]["total_successes"] == 1

    @pytest.mark.asyncio
    async def test_rejects_when_open(self, manager, clock):
        async def broken():
            raise ConnectionError("refused")

        for _ in range(3):
            with pytest.raises(ConnectionError):
                await manager.check_and_call("svc", broken)

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await manager.check_and_call("svc", broken)

        error = exc_info.value
        assert error.key == "svc"
        assert error.retry_after == 10
        assert manager.total_rejected_calls == 1
        assert await manager.open_breakers() == ["svc"]

    @pytest.mark.asyncio
    async def test_breakers_are_independent(self, manager):
        async def broken():
            raise ConnectionError("refused")

        async def healthy():
            return "ok"

        for _ in range(3):
            with pytest.raises(ConnectionError):
                await manager.check_and_call("bad", broken)

        assert await manager.check_and_call("good", healthy) == "ok"

    @pytest.mark.asyncio
    async def test_per_key_config(self, manager):
        manager.set_config("fragile", CircuitBreakerConfig(failure_threshold=1))

        async def broken():
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await manager.check_and_call("fragile", broken)
        assert (await manager.get_breaker("fragile")).state == CircuitBreakerState.OPEN

    @pytest.mark.asyncio
    async def test_reset_breaker(self, manager):
        async def broken():
            raise ConnectionError("refused")

        for _ in range(3):
            with pytest.raises(ConnectionError):
                await manager.check_and_call("svc", broken)

        assert await manager.reset_breaker("svc") is True
        assert await manager.reset_breaker("unknown") is False
        assert await manager.open_breakers() == []

    @pytest.mark.asyncio
    async def test_cancelled_probe_gives_back_its_slot(self, manager, clock):
        async def broken():
            raise ConnectionError("refused")

        async def hang():
            await asyncio.sleep(10)

        async def healthy():
            return "ok"

        for _ in range(3):
            with pytest.raises(ConnectionError):
                await manager.check_and_call("svc", broken)
        clock.advance(10)

        for _ in range(2):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(manager.check_and_call("svc", hang), 0.01)

        breaker = await manager.get_breaker("svc")
        assert breaker.state == CircuitBreakerState.HALF_OPEN
        assert breaker.half_open_attempts == 0
        assert await manager.check_and_call("svc", healthy) == "ok"
