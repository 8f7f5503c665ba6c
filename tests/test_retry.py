"""Tests for retry with backoff."""

import pytest

from mcp_kit.resilience import RetryConfigurationError, RetryPolicy, retry


class Flaky:
    """Fails a fixed number of times before succeeding."""

    def __init__(self, failures, error=ConnectionError("down")):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:
    """Test backoff computation and validation."""

    def test_exponential_delays_are_capped(self):
        policy = RetryPolicy(initial_delay=1, max_delay=5, multiplier=2, jitter=0)

        assert [policy.compute_delay(n) for n in range(1, 5)] == [1, 2, 4, 5]

    def test_jitter_stays_in_bounds(self):
        policy = RetryPolicy(initial_delay=10, max_delay=10, jitter=0.2)

        for _ in range(50):
            assert 8 <= policy.compute_delay(1) <= 12

    def test_retry_after_overrides_backoff(self):
        policy = RetryPolicy(initial_delay=1, max_delay=30, jitter=0)
        error = Exception("throttled")
        error.retry_after = 7

        assert policy.delay_for(1, error) == 7

    def test_retry_after_is_capped(self):
        policy = RetryPolicy(initial_delay=1, max_delay=10, jitter=0)
        error = Exception("throttled")
        error.retry_after = 600

        assert policy.delay_for(1, error) == 10

    def test_give_up_on_wins(self):
        policy = RetryPolicy(retry_on=(Exception,), give_up_on=(ValueError,))

        assert policy.should_retry(RuntimeError()) is True
        assert policy.should_retry(ValueError()) is False

    @pytest.mark.parametrize("kwargs", [
        {"max_attempts": 0},
        {"initial_delay": 0},
        {"initial_delay": 5, "max_delay": 1},
        {"multiplier": 0.5},
        {"jitter": 1.5},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(RetryConfigurationError):
            RetryPolicy(**kwargs)


class TestRetryDecorator:
    """Test the retry decorator on sync and async callables."""

    def test_sync_retries_until_success(self):
        delays = []
        flaky = Flaky(failures=2)

        wrapped = retry(max_attempts=3, jitter=0, initial_delay=0.5, sleep=delays.append)(flaky)

        assert wrapped() == "ok"
        assert flaky.calls == 3
        assert delays == [0.5, 1.0]

    def test_sync_gives_up_and_reraises(self):
        flaky = Flaky(failures=5)
        wrapped = retry(max_attempts=2, sleep=lambda d: None)(flaky)

        with pytest.raises(ConnectionError):
            wrapped()
        assert flaky.calls == 2

    def test_non_retryable_error_is_raised_immediately(self):
        flaky = Flaky(failures=1, error=KeyError("nope"))
        wrapped = retry(retry_on=(ConnectionError,), sleep=lambda d: None)(flaky)

        with pytest.raises(KeyError):
            wrapped()
        assert flaky.calls == 1

    @pytest.mark.asyncio
    async def test_async_retries(self):
        delays = []
        calls = 0

        async def fake_sleep(delay):
            delays.append(delay)

        @retry(max_attempts=4, initial_delay=0.1, jitter=0, sleep=fake_sleep)
        async def fetch():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise TimeoutError("slow")
            return calls

        assert await fetch() == 3
        assert delays == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_on_retry_hook(self):
        states = []

        async def fake_sleep(delay):
            pass

        @retry(max_attempts=2, jitter=0, sleep=fake_sleep, on_retry=states.append)
        async def always_fails():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await always_fails()

        assert len(states) == 1
        assert states[0].attempt == 1
        assert states[0].func_name.endswith("always_fails")
        assert isinstance(states[0].error, ConnectionError)

    def test_policy_is_exposed(self):
        @retry(max_attempts=7)
        def noop():
            pass

        assert noop.retry_policy.max_attempts == 7
