from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
import logging

from rollbot.domain.models import CycleReport
from rollbot.workers.cycle import ClaimCycle

logger = logging.getLogger("runtime")


@dataclass
class SchedulerState:
    started: bool = False
    stopped: bool = False
    cycle_running: bool = False
    ticks_total: int = 0
    skipped_ticks_total: int = 0
    cycles_total: int = 0
    idle_cycles_total: int = 0
    rolled_back_total: int = 0
    errors_total: int = 0
    rows_completed_total: int = 0
    rows_errored_total: int = 0
    conflicts_total: int = 0
    last_cycle_at: datetime | None = None

    def record(self, report: CycleReport) -> None:
        self.cycles_total += 1
        self.last_cycle_at = datetime.now(tz=UTC)
        if report.idle:
            self.idle_cycles_total += 1
        if report.rolled_back:
            self.rolled_back_total += 1
        self.rows_completed_total += report.completed
        self.rows_errored_total += report.errored
        self.conflicts_total += report.conflicts


class CycleScheduler:
    """Fixed-interval timer that runs at most one claim cycle at a time.

    A tick that fires while a cycle is still running is dropped. ``stop`` ends
    the timer and waits for the in-flight cycle instead of cancelling it.
    """

    def __init__(
        self,
        cycle: ClaimCycle,
        *,
        poll_interval_ms: int = 3000,
        state: SchedulerState | None = None,
    ) -> None:
        self.cycle = cycle
        self.poll_interval_ms = poll_interval_ms
        self.state = state or SchedulerState()
        self._stop_event = asyncio.Event()
        self._timer_task: asyncio.Task[None] | None = None
        self._cycle_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    @property
    def active(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def start(self) -> None:
        if self.active:
            return
        self._stop_event.clear()
        self.state.started = True
        self.state.stopped = False
        self._timer_task = asyncio.create_task(self._timer())
        logger.info(
            "roll request polling started",
            extra={"service": "scheduler", "poll_interval_ms": self.poll_interval_ms},
        )

    def tick(self) -> bool:
        self.state.ticks_total += 1
        if self.running:
            self.state.skipped_ticks_total += 1
            logger.debug("previous roll cycle still running, tick skipped")
            return False
        self._cycle_task = asyncio.create_task(self._run_cycle())
        return True

    async def stop(self) -> None:
        self._stop_event.set()
        if self._timer_task is not None:
            await self._timer_task
            self._timer_task = None
        if self._cycle_task is not None:
            await self._cycle_task
            self._cycle_task = None
        if self.state.started and not self.state.stopped:
            self.state.stopped = True
            logger.info("roll request polling stopped", extra={"service": "scheduler"})

    async def _timer(self) -> None:
        interval_seconds = max(self.poll_interval_ms, 1) / 1000
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                break
            except TimeoutError:
                pass
            self.tick()

    async def _run_cycle(self) -> None:
        self.state.cycle_running = True
        try:
            report = await self.cycle.run_once()
            self.state.record(report)
        except Exception:
            self.state.errors_total += 1
            logger.exception("roll cycle crashed", extra={"service": "scheduler", "error_code": "internal_error"})
        finally:
            self.state.cycle_running = False
