"""
Circuit breaker and retry with jittered backoff for the worker's idempotent
external reads (reasoning service, governance API).

Never wrap the custodial signing call with retry: a resubmission could
double-spend the agent's rate budget or the same transaction bytes.

States: CLOSED (normal) -> OPEN (failing) -> HALF_OPEN (testing recovery)
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger("clawd_worker.resilience")

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open and request is rejected."""

    def __init__(self, service: str, remaining_seconds: float):
        self.service = service
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Circuit breaker open for '{service}', retry in {remaining_seconds:.1f}s"
        )


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for a specific service.

    Opens after ``fail_threshold`` failures; after ``cooldown_sec`` a test
    request is let through (half-open), and two successes close it again.

    ``reachable_errors`` are raised by a service that answered but said
    something unusable (a malformed reasoning reply); they count as
    successes for the circuit and still propagate to the caller.
    """

    service: str
    fail_threshold: int = 5
    cooldown_sec: float = 60.0
    clock: Callable[[], float] = time.monotonic
    reachable_errors: Tuple[Type[BaseException], ...] = ()

    state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    failure_count: int = field(default=0, init=False)
    last_failure_time: float = field(default=0.0, init=False)
    success_count_in_half_open: int = field(default=0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @property
    def time_until_retry(self) -> float:
        if self.state != CircuitState.OPEN:
            return 0.0
        remaining = self.cooldown_sec - (self.clock() - self.last_failure_time)
        return max(0.0, remaining)

    def _cooldown_elapsed(self) -> bool:
        return (self.clock() - self.last_failure_time) >= self.cooldown_sec

    async def acquire(self) -> bool:
        """Return True if a request may proceed, raise CircuitBreakerOpen if not."""
        async with self._lock:
            if self.state == CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    raise CircuitBreakerOpen(self.service, self.time_until_retry)
                logger.info(f"Circuit '{self.service}' transitioning to HALF_OPEN")
                self.state = CircuitState.HALF_OPEN
                self.success_count_in_half_open = 0
            return True

    async def record_success(self) -> None:
        async with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self.success_count_in_half_open += 1
                if self.success_count_in_half_open >= 2:
                    logger.info(f"Circuit '{self.service}' recovered, transitioning to CLOSED")
                    self.state = CircuitState.CLOSED
                    self.failure_count = 0
            elif self.failure_count > 0:
                self.failure_count -= 1

    async def record_failure(self, error: Optional[Exception] = None) -> None:
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = self.clock()

            if self.state == CircuitState.HALF_OPEN:
                logger.warning(
                    f"Circuit '{self.service}' failed in HALF_OPEN, reopening. Error: {error}"
                )
                self.state = CircuitState.OPEN
                self.success_count_in_half_open = 0
            elif self.state == CircuitState.CLOSED and self.failure_count >= self.fail_threshold:
                logger.warning(
                    f"Circuit '{self.service}' opening after {self.failure_count} failures. "
                    f"Cooldown: {self.cooldown_sec}s"
                )
                self.state = CircuitState.OPEN

    def get_state_info(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "time_until_retry": self.time_until_retry,
        }


_circuits: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(service: str, **kwargs) -> CircuitBreaker:
    """Get or create the process-wide circuit breaker for a service."""
    if service not in _circuits:
        _circuits[service] = CircuitBreaker(service=service, **kwargs)
    return _circuits[service]


def get_all_circuit_states() -> Dict[str, Dict[str, Any]]:
    return {name: cb.get_state_info() for name, cb in _circuits.items()}


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0
    jitter_factor: float = 0.5

    retryable_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        asyncio.TimeoutError,
        httpx.TransportError,
    )


def jittered_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_factor: float = 0.5,
) -> float:
    """Exponential backoff for ``attempt`` (0-indexed) with +/- jitter, capped."""
    capped_delay = min(base_delay * (2 ** attempt), max_delay)
    jitter_range = capped_delay * jitter_factor
    final_delay = max(0.1, capped_delay + random.uniform(-jitter_range, jitter_range))
    return min(final_delay, max_delay)


async def with_retry(
    func: Callable[[], Awaitable[T]],
    circuit: Optional[CircuitBreaker] = None,
    config: Optional[RetryConfig] = None,
) -> T:
    """
    Execute an async function with retry and an optional circuit breaker.

    Raises:
        CircuitBreakerOpen: If the circuit is open
        Exception: Final exception after all retries are exhausted
    """
    config = config or RetryConfig()
    name = f"service {circuit.service}" if circuit else "function"

    if circuit:
        await circuit.acquire()

    for attempt in range(config.max_attempts):
        try:
            result = await func()
        except config.retryable_exceptions as e:
            if attempt < config.max_attempts - 1:
                delay = jittered_backoff(
                    attempt, config.base_delay_sec, config.max_delay_sec, config.jitter_factor
                )
                logger.warning(
                    f"Retry {attempt + 1}/{config.max_attempts} for {name} after {delay:.2f}s. Error: {e}"
                )
                await asyncio.sleep(delay)
                continue
            logger.error(f"All {config.max_attempts} attempts failed for {name}. Final error: {e}")
            if circuit:
                await circuit.record_failure(e)
            raise
        except Exception as e:
            if circuit and isinstance(e, circuit.reachable_errors):
                await circuit.record_success()
            elif circuit:
                await circuit.record_failure(e)
            raise

        if circuit:
            await circuit.record_success()
        return result

    raise RuntimeError("with_retry requires max_attempts >= 1")
