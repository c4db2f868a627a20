"""Tests for resilience utilities: retry and circuit breaker."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from nox_stream.core.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    RetryConfig,
    retry_async,
)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRetryAsync:
    async def test_success_first_attempt(self) -> None:
        fn = AsyncMock(return_value=42)
        assert await retry_async(fn) == 42
        assert fn.call_count == 1

    async def test_retries_on_failure(self) -> None:
        fn = AsyncMock(side_effect=[ValueError("fail"), ValueError("fail"), 99])
        config = RetryConfig(max_attempts=3, base_delay_s=0.01)
        assert await retry_async(fn, config=config) == 99
        assert fn.call_count == 3

    async def test_raises_last_error_after_max_attempts(self) -> None:
        fn = AsyncMock(side_effect=ValueError("always fails"))
        config = RetryConfig(max_attempts=2, base_delay_s=0.01)
        with pytest.raises(ValueError, match="always fails"):
            await retry_async(fn, config=config)
        assert fn.call_count == 2

    async def test_non_retryable_error_propagates_immediately(self) -> None:
        fn = AsyncMock(side_effect=KeyError("nope"))
        config = RetryConfig(max_attempts=5, base_delay_s=0.01)
        with pytest.raises(KeyError):
            await retry_async(fn, config=config, retry_on=(ValueError,))
        assert fn.call_count == 1

    async def test_passes_args_and_kwargs(self) -> None:
        fn = AsyncMock(return_value="ok")
        await retry_async(fn, "a", "b", config=RetryConfig(), key="val")
        fn.assert_called_once_with("a", "b", key="val")


class TestCircuitBreaker:
    def _breaker(self, clock: FakeClock, threshold: int = 3) -> CircuitBreaker:
        config = CircuitBreakerConfig(failure_threshold=threshold, recovery_timeout_s=60.0)
        return CircuitBreaker("kokoro", config, clock=clock)

    async def test_starts_closed(self) -> None:
        breaker = self._breaker(FakeClock())
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"

    async def test_opens_after_threshold(self) -> None:
        breaker = self._breaker(FakeClock(), threshold=2)
        fn = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(fn)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.call(fn)
        assert fn.call_count == 2

    async def test_success_resets_failure_count(self) -> None:
        breaker = self._breaker(FakeClock(), threshold=2)
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("x")))
        await breaker.call(AsyncMock(return_value=1))
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("x")))
        assert breaker.state == CircuitState.CLOSED

    async def test_half_open_probe_closes_on_success(self) -> None:
        clock = FakeClock()
        breaker = self._breaker(clock, threshold=1)
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("x")))
        assert breaker.state == CircuitState.OPEN

        clock.now += 61
        assert breaker.state == CircuitState.HALF_OPEN
        await breaker.call(AsyncMock(return_value="back"))
        assert breaker.state == CircuitState.CLOSED

    async def test_half_open_probe_failure_reopens(self) -> None:
        clock = FakeClock()
        breaker = self._breaker(clock, threshold=3)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.call(AsyncMock(side_effect=RuntimeError("x")))

        clock.now += 61
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("still down")))
        assert breaker.state == CircuitState.OPEN

    async def test_reset(self) -> None:
        breaker = self._breaker(FakeClock(), threshold=1)
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("x")))
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED

    async def test_cancellation_is_not_a_failure(self) -> None:
        breaker = self._breaker(FakeClock(), threshold=1)
        with pytest.raises(asyncio.CancelledError):
            await breaker.call(AsyncMock(side_effect=asyncio.CancelledError()))
        assert breaker.state == CircuitState.CLOSED

    async def test_cancelled_call_frees_half_open_slot(self) -> None:
        clock = FakeClock()
        breaker = self._breaker(clock, threshold=1)
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("x")))
        clock.now += 61

        with pytest.raises(asyncio.CancelledError):
            await breaker.call(AsyncMock(side_effect=asyncio.CancelledError()))
        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.call(AsyncMock(return_value="back")) == "back"
        assert breaker.state == CircuitState.CLOSED
