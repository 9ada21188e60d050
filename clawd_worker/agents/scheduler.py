"""
CycleScheduler - fixed-interval runner with a single-flight guard.

At most one cycle runs at a time per process. A second request while a cycle
is in flight fails fast with CycleInProgress and has no side effects.
NEVER lets a cycle exception end the loop.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Optional

from .executor import CycleExecutor
from ..config import WorkerConfig
from ..errors import CycleInProgress
from ..schemas import CycleSummary, WorkerState, utcnow

logger = logging.getLogger("clawd_worker.agents.scheduler")


class SchedulerHandle:
    """Returned by ``CycleScheduler.start``; ``stop()`` ends the loop."""

    def __init__(self, scheduler: "CycleScheduler", task: asyncio.Task):
        self._scheduler = scheduler
        self.task = task

    async def stop(self):
        """Cancel the pending wait. An in-flight cycle runs to completion."""
        self._scheduler._stop_event.set()
        await self.task

    async def wait(self):
        await self.task


class CycleScheduler:
    """Drives CycleExecutor on an interval and keeps the process-level WorkerState."""

    def __init__(
        self,
        executor: CycleExecutor,
        config: WorkerConfig,
        state: Optional[WorkerState] = None,
    ):
        self.executor = executor
        self.config = config
        self.state = state or WorkerState(interval_ms=config.interval_ms)
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    @property
    def cycle_in_progress(self) -> bool:
        return self._lock.locked()

    async def _run(self, dry_run: bool) -> CycleSummary:
        coro = self.executor.run_cycle(
            dry_run=dry_run,
            max_concurrency=self.config.max_concurrency,
        )
        if self.config.cycle_timeout_seconds > 0:
            return await asyncio.wait_for(coro, timeout=self.config.cycle_timeout_seconds)
        return await coro

    async def trigger(self, dry_run: Optional[bool] = None) -> CycleSummary:
        """
        Run one cycle now.

        ``dry_run=None`` uses the configured mode. A dry-run trigger on a
        live worker leaves the execution totals untouched.

        Raises:
            CycleInProgress: another cycle is running
            EnumerationFailed / asyncio.TimeoutError: the cycle itself failed
        """
        if self._lock.locked():
            raise CycleInProgress()

        rehearsal = dry_run is True and not self.config.dry_run
        effective_dry_run = self.config.dry_run if dry_run is None else dry_run

        async with self._lock:
            self.state.cycle_in_progress = True
            try:
                summary = await self._run(effective_dry_run)
            except Exception as e:
                if not rehearsal:
                    self.state.last_cycle_error = f"{type(e).__name__}: {e}"
                    self.state.last_cycle_at = utcnow()
                raise
            finally:
                self.state.cycle_in_progress = False

            if not rehearsal:
                self._record(summary)
            return summary

    def _record(self, summary: CycleSummary):
        self.state.last_cycle_summary = summary
        self.state.last_cycle_at = utcnow()
        self.state.last_cycle_error = None
        self.state.total_cycles_run += 1
        self.state.total_votes_executed += summary.executed
        self.state.total_votes_failed += summary.failed

    async def _tick(self):
        try:
            await self.trigger()
        except CycleInProgress:
            logger.info("Skipping scheduled cycle: previous cycle still in progress")
        except Exception as e:
            logger.error(f"Cycle failed: {type(e).__name__}: {e}")

    async def _loop(self):
        try:
            while not self._stop_event.is_set():
                await self._tick()
                if self.config.run_once:
                    break

                self.state.next_cycle_at = utcnow() + timedelta(milliseconds=self.config.interval_ms)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.state.is_running = False
            self.state.next_cycle_at = None
            logger.info("Scheduler stopped")

    def start(self) -> SchedulerHandle:
        """Start the background loop; the first cycle runs immediately."""
        self._stop_event.clear()
        self.state.is_running = True
        self.state.started_at = self.state.started_at or utcnow()
        self.state.interval_ms = self.config.interval_ms

        logger.info(
            f"Scheduler started - interval {self.config.interval_ms}ms, "
            f"concurrency {self.config.max_concurrency}, {self.config.get_mode_description()}"
        )
        task = asyncio.create_task(self._loop())
        return SchedulerHandle(self, task)

    async def run_once(self) -> Optional[CycleSummary]:
        """Exactly one cycle, errors recorded rather than raised."""
        self.state.is_running = True
        self.state.started_at = self.state.started_at or utcnow()
        try:
            await self._tick()
        finally:
            self.state.is_running = False
        return self.state.last_cycle_summary
