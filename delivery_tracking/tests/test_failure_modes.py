"""
Failure Injection Tests.

Validates resilience helpers used for calls to the courier platform.
"""

import pytest
from delivery_tracking.app.core.reliability import CircuitBreaker, CircuitOpenError, retry_with_backoff


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    # Threshold reached, calls are rejected without reaching the function
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_probe_closes_on_success():
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=30)

    async def failing_func():
        raise ValueError("Boom")

    async def healthy_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    # Pretend the reset timeout has elapsed
    cb.last_failure_time -= 60

    assert await cb.call(healthy_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_probe_reopens_on_failure():
    cb = CircuitBreaker(failure_threshold=3, reset_timeout=0)
    cb.state = "OPEN"

    async def failing_func():
        raise ValueError("Still down")

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failures():
    attempts = []

    async def flaky(value):
        attempts.append(value)
        if len(attempts) < 3:
            raise ConnectionError("reset by peer")
        return value * 2

    result = await retry_with_backoff(flaky, 21, attempts=3, base_delay=0)

    assert result == 42
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retry_reraises_last_error_when_exhausted():
    attempts = []

    async def always_down():
        attempts.append(1)
        raise ConnectionError(f"attempt {len(attempts)}")

    with pytest.raises(ConnectionError, match="attempt 4"):
        await retry_with_backoff(always_down, attempts=4, base_delay=0)


@pytest.mark.asyncio
async def test_retry_does_not_retry_other_errors():
    attempts = []

    async def bad_request():
        attempts.append(1)
        raise KeyError("status")

    with pytest.raises(KeyError):
        await retry_with_backoff(bad_request, attempts=5, base_delay=0, retry_on=(ConnectionError,))
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_retry_backs_off_exponentially(mocker):
    sleep = mocker.patch("delivery_tracking.app.core.reliability.asyncio.sleep", new_callable=mocker.AsyncMock)

    async def always_down():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await retry_with_backoff(always_down, attempts=4, base_delay=0.5, max_delay=1.5)

    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0, 1.5]
