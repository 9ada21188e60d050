"""Tests for the circuit breaker and retry wrapper around external reads."""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from clawd_worker.resilience import (
    CircuitBreaker,
    CircuitBreakerOpen,
    CircuitState,
    RetryConfig,
    jittered_backoff,
    with_retry,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestCircuitBreaker:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def circuit(self, clock):
        return CircuitBreaker(service="reasoning-test", fail_threshold=3, cooldown_sec=10, clock=clock)

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self, circuit):
        for _ in range(3):
            await circuit.record_failure()
        assert circuit.state == CircuitState.OPEN

        with pytest.raises(CircuitBreakerOpen) as exc_info:
            await circuit.acquire()
        assert exc_info.value.service == "reasoning-test"

    @pytest.mark.asyncio
    async def test_half_open_then_closed_after_two_successes(self, circuit, clock):
        for _ in range(3):
            await circuit.record_failure()
        clock.now += 11

        assert await circuit.acquire() is True
        assert circuit.state == CircuitState.HALF_OPEN
        await circuit.record_success()
        await circuit.record_success()
        assert circuit.state == CircuitState.CLOSED
        assert circuit.failure_count == 0

    @pytest.mark.asyncio
    async def test_failure_in_half_open_reopens(self, circuit, clock):
        for _ in range(3):
            await circuit.record_failure()
        clock.now += 11
        await circuit.acquire()
        await circuit.record_failure()
        assert circuit.state == CircuitState.OPEN


class TestWithRetry:
    def test_backoff_is_capped(self):
        for attempt in range(10):
            assert jittered_backoff(attempt, base_delay=1.0, max_delay=5.0) <= 5.0

    @pytest.mark.asyncio
    async def test_retries_transport_errors(self):
        func = AsyncMock(side_effect=[httpx.ConnectError("refused"), "ok"])
        with patch("clawd_worker.resilience.asyncio.sleep", new=AsyncMock()):
            result = await with_retry(func, config=RetryConfig(max_attempts=3))
        assert result == "ok"
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_raises_immediately(self):
        circuit = CircuitBreaker(service="governance-test")
        func = AsyncMock(side_effect=ValueError("bad payload"))
        with pytest.raises(ValueError):
            await with_retry(func, circuit=circuit, config=RetryConfig(max_attempts=3))
        assert func.await_count == 1
        assert circuit.failure_count == 1

    @pytest.mark.asyncio
    async def test_reachable_error_does_not_trip_circuit(self):
        circuit = CircuitBreaker(service="reasoning-reply-test", fail_threshold=2, reachable_errors=(ValueError,))
        func = AsyncMock(side_effect=ValueError("malformed reply"))
        for _ in range(3):
            with pytest.raises(ValueError):
                await with_retry(func, circuit=circuit, config=RetryConfig(max_attempts=3))
        assert func.await_count == 3
        assert circuit.state == CircuitState.CLOSED
        assert circuit.failure_count == 0

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self):
        func = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with patch("clawd_worker.resilience.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(httpx.ReadTimeout):
                await with_retry(func, config=RetryConfig(max_attempts=2))
        assert func.await_count == 2
