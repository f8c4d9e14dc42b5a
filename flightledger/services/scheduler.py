"""
FlightLedger - Scheduler

Two jobs on independent cadences: the poll-and-commit cycle and the
reconciliation sweep. Each job is single-flight: if a tick is still running
when the next one is due, the new tick is skipped and logged. Manual
triggers go through the same guard and are refused while a tick runs.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from flightledger.core.context import SyncContext
from flightledger.core.errors import TickInProgress
from flightledger.models.flight import SyncOutcome
from flightledger.services.ledger_sync import LedgerSyncService
from flightledger.services.reconciler import ReconciliationSweeper

logger = logging.getLogger(__name__)


class Job:
    """A named periodic coroutine with an overlap guard."""

    def __init__(self, name: str, interval_seconds: float, func: Callable[[], Awaitable]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.running = False
        self.runs = 0
        self.skipped = 0
        self.failures = 0

    async def run_once(self) -> bool:
        """Run one scheduled tick. Returns False if skipped because a tick is in progress."""
        if self.running:
            self.skipped += 1
            logger.warning(f"[SCHEDULER] {self.name} tick still running, skipping this one")
            return False

        try:
            await self._run()
        except Exception as e:
            logger.exception(f"[SCHEDULER] {self.name} tick failed: {e}")
        return True

    async def trigger(self) -> Any:
        """
        Run one tick on demand and return its result.

        Raises:
            TickInProgress: a tick of this job is already running
        """
        if self.running:
            raise TickInProgress(f"{self.name} tick already running")
        logger.info(f"[SCHEDULER] {self.name} tick triggered manually")
        return await self._run()

    async def _run(self) -> Any:
        self.running = True
        try:
            result = await self.func()
            self.runs += 1
            return result
        except Exception:
            self.failures += 1
            raise
        finally:
            self.running = False


class Scheduler:
    """Drives poll and sweep ticks until stopped."""

    def __init__(self, context: SyncContext, sync: LedgerSyncService, sweeper: ReconciliationSweeper):
        settings = context.settings
        self.context = context
        self.poll_job = Job("poll", settings.POLL_INTERVAL_SECONDS, sync.poll_all)
        self.sweep_job = Job("sweep", settings.SWEEP_INTERVAL_SECONDS, sweeper.sweep)
        self._tasks: list[asyncio.Task] = []
        self._ticks: set[asyncio.Task] = set()
        self._stopping: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    async def run_poll_once(self) -> bool:
        return await self.poll_job.run_once()

    async def run_sweep_once(self) -> bool:
        return await self.sweep_job.run_once()

    async def trigger_poll(self) -> list[SyncOutcome]:
        return await self.poll_job.trigger()

    async def trigger_sweep(self) -> list[SyncOutcome]:
        return await self.sweep_job.trigger()

    async def _loop(self, job: Job) -> None:
        while not self._stopping.is_set():
            # Ticks are fired, not awaited, so a slow tick shows up as a skipped one
            tick = asyncio.create_task(job.run_once(), name=f"flightledger-{job.name}-tick")
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=job.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self._tasks:
            return
        self._stopping = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._loop(self.poll_job), name="flightledger-poll"),
            asyncio.create_task(self._loop(self.sweep_job), name="flightledger-sweep"),
        ]
        logger.info(
            f"[SCHEDULER] Started: poll every {self.poll_job.interval_seconds}s, "
            f"sweep every {self.sweep_job.interval_seconds}s"
        )

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._stopping.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        for tick in list(self._ticks):
            tick.cancel()
        await asyncio.gather(*self._ticks, return_exceptions=True)
        self._tasks = []
        logger.info("[SCHEDULER] Stopped")

    def status(self) -> dict:
        return {
            job.name: {
                "interval_seconds": job.interval_seconds,
                "running": job.running,
                "runs": job.runs,
                "skipped": job.skipped,
                "failures": job.failures,
            }
            for job in (self.poll_job, self.sweep_job)
        }
