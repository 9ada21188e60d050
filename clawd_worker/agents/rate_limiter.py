"""
RateLimiter - per-agent sliding-window gate on outbound signed transactions.

Evaluated immediately before submission, so skipped or negative decisions
never consume budget. Windows live in memory and reset on process restart.
"""
import asyncio
import logging
import time
from collections import defaultdict, deque
from enum import Enum
from typing import Callable, Deque, Dict

logger = logging.getLogger("clawd_worker.agents.rate_limiter")


class RateLimitDecision(str, Enum):
    ALLOWED = "allowed"
    RATE_LIMITED = "rate_limited"


class RateLimiter:
    """
    Fixed ceiling of ``max_transactions`` per rolling ``window_seconds``,
    tracked independently per agent id.

    Same-agent calls are serialised by a per-agent lock so two concurrent
    callers can never both observe "4 of 5 used".
    """

    DEFAULT_MAX_TRANSACTIONS = 5
    DEFAULT_WINDOW_SECONDS = 3600.0

    def __init__(
        self,
        max_transactions: int = DEFAULT_MAX_TRANSACTIONS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_transactions < 1:
            raise ValueError("max_transactions must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_transactions = max_transactions
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = defaultdict(deque)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _prune(self, agent_id: str, now: float) -> Deque[float]:
        window = self._windows[agent_id]
        cutoff = now - self.window_seconds
        while window and window[0] < cutoff:
            window.popleft()
        return window

    async def try_consume(self, agent_id: str) -> RateLimitDecision:
        """Record a slot and allow, or refuse without recording."""
        async with self._locks[agent_id]:
            now = self._clock()
            window = self._prune(agent_id, now)
            if len(window) >= self.max_transactions:
                logger.info(
                    f"Agent {agent_id} rate limited "
                    f"({len(window)}/{self.max_transactions}, retry in {self._retry_after(window, now):.0f}s)"
                )
                return RateLimitDecision.RATE_LIMITED
            window.append(now)
            return RateLimitDecision.ALLOWED

    def _retry_after(self, window: Deque[float], now: float) -> float:
        if len(window) < self.max_transactions:
            return 0.0
        return max(0.0, window[0] + self.window_seconds - now)

    def remaining(self, agent_id: str) -> int:
        window = self._prune(agent_id, self._clock())
        return max(0, self.max_transactions - len(window))

    def retry_after(self, agent_id: str) -> float:
        """Seconds until the next slot frees up for this agent."""
        now = self._clock()
        return self._retry_after(self._prune(agent_id, now), now)

    def used(self, agent_id: str) -> int:
        return len(self._prune(agent_id, self._clock()))

    def get_summary(self) -> dict:
        """Get summary of rate limit state for display."""
        now = self._clock()
        return {
            "max_transactions": self.max_transactions,
            "window_seconds": self.window_seconds,
            "agents": {
                agent_id: len(self._prune(agent_id, now))
                for agent_id in list(self._windows)
            },
        }
