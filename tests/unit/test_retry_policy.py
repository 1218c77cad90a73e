"""
Unit tests for RetryPolicy and the retryability rules.
"""

import pytest

from relaybot.core.exceptions import CircuitBreakerOpenError, ConnectFailedError
from relaybot.core.resilience.circuit_breaker import CircuitBreaker
from relaybot.core.resilience.retry_policy import PassthroughPolicy, RetryPolicy, is_retryable


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)

    return _sleep


def _flaky(failures, result="done"):
    """Operation that raises OSError ``failures`` times, then returns."""
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise OSError("transient")
        return result

    return operation, calls


@pytest.mark.unit
class TestBackoff:
    def test_exponential_delays_capped(self):
        policy = RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=5.0, jitter=False)

        assert [policy.calculate_delay(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]

    def test_fixed_delay(self):
        policy = RetryPolicy(base_delay_seconds=0.25, exponential_backoff=False, jitter=False)

        assert policy.calculate_delay(1) == policy.calculate_delay(4) == 0.25

    def test_jitter_stays_within_ten_percent(self):
        policy = RetryPolicy(base_delay_seconds=1.0, jitter=True)

        for _ in range(50):
            assert 0.9 <= policy.calculate_delay(1) <= 1.1

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


@pytest.mark.unit
class TestRetryability:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (OSError("reset"), True),
            (ConnectFailedError("bad token", is_retryable=False), False),
            (ConnectFailedError("gateway 502", is_retryable=True), True),
            (CircuitBreakerOpenError("login", 10.0), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retryable(error) is expected


@pytest.mark.unit
class TestExecution:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, fake_sleep, sleeps):
        policy = RetryPolicy(max_attempts=3, base_delay_seconds=0.1, jitter=False, sleep=fake_sleep)
        operation, calls = _flaky(failures=2)

        assert await policy.execute(operation, "login") == "done"
        assert calls["count"] == 3
        assert sleeps == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self, fake_sleep, sleeps):
        policy = RetryPolicy(max_attempts=2, base_delay_seconds=0.1, jitter=False, sleep=fake_sleep)
        operation, calls = _flaky(failures=5)

        with pytest.raises(OSError):
            await policy.execute(operation, "connect")

        assert calls["count"] == 2
        assert sleeps == [0.1]

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, fake_sleep, sleeps, mocker):
        policy = RetryPolicy(max_attempts=5, sleep=fake_sleep)
        operation = mocker.AsyncMock(side_effect=ConnectFailedError("bad token", is_retryable=False))

        with pytest.raises(ConnectFailedError):
            await policy.execute(operation, "login")

        assert operation.await_count == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_open_breaker_stops_retries(self, fake_sleep):
        breaker = CircuitBreaker(failure_threshold=2, break_duration_seconds=60.0)
        policy = RetryPolicy(
            max_attempts=5, base_delay_seconds=0.1, jitter=False, circuit_breaker=breaker, sleep=fake_sleep
        )
        operation, calls = _flaky(failures=10)

        with pytest.raises(CircuitBreakerOpenError):
            await policy.execute(operation, "connect")

        assert calls["count"] == 2
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_passthrough_runs_once(self):
        operation, calls = _flaky(failures=1)

        with pytest.raises(OSError):
            await PassthroughPolicy().execute(operation)

        assert calls["count"] == 1
