import asyncio

import pytest

from rollbot.clients.stub import StubNotificationChannel
from rollbot.domain.models import CycleReport, RequestStatus
from rollbot.repositories.stub import InMemoryRollRequestRepository
from rollbot.workers.cycle import ClaimCycle
from rollbot.workers.processor import RequestProcessor
from rollbot.workers.scheduler import CycleScheduler


class _GatedCycle:
    def __init__(self, gate: asyncio.Event) -> None:
        self.gate = gate
        self.started = 0
        self.finished = 0

    async def run_once(self) -> CycleReport:
        self.started += 1
        await self.gate.wait()
        self.finished += 1
        return CycleReport(claimed=1, completed=1, committed=True)


@pytest.mark.unit
def test_ticks_while_cycle_is_running_are_skipped() -> None:
    async def _run() -> None:
        gate = asyncio.Event()
        cycle = _GatedCycle(gate)
        scheduler = CycleScheduler(cycle, poll_interval_ms=5)  # type: ignore[arg-type]

        scheduler.start()
        await asyncio.sleep(0.08)

        assert cycle.started == 1
        assert scheduler.running is True
        assert scheduler.state.skipped_ticks_total >= 1
        gate.set()
        await scheduler.stop()
        assert scheduler.state.rows_completed_total >= 1

    asyncio.run(_run())


@pytest.mark.unit
def test_stop_waits_for_in_flight_cycle() -> None:
    async def _run() -> None:
        gate = asyncio.Event()
        cycle = _GatedCycle(gate)
        scheduler = CycleScheduler(cycle, poll_interval_ms=5)  # type: ignore[arg-type]
        scheduler.start()
        while cycle.started == 0:
            await asyncio.sleep(0.005)

        stop_task = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.03)
        assert stop_task.done() is False
        assert cycle.finished == 0

        gate.set()
        await stop_task

        assert cycle.finished == 1
        assert scheduler.state.stopped is True
        assert scheduler.active is False
        assert cycle.started == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_start_is_idempotent() -> None:
    async def _run() -> None:
        gate = asyncio.Event()
        gate.set()
        scheduler = CycleScheduler(_GatedCycle(gate), poll_interval_ms=1000)  # type: ignore[arg-type]
        scheduler.start()
        first_timer = scheduler._timer_task
        scheduler.start()

        assert scheduler._timer_task is first_timer
        await scheduler.stop()
        assert scheduler.state.ticks_total == 0

    asyncio.run(_run())


@pytest.mark.unit
def test_crashing_cycle_is_counted_and_ticking_continues() -> None:
    class _CrashingCycle:
        calls = 0

        async def run_once(self) -> CycleReport:
            _CrashingCycle.calls += 1
            raise RuntimeError("boom")

    async def _run() -> None:
        scheduler = CycleScheduler(_CrashingCycle(), poll_interval_ms=5)  # type: ignore[arg-type]
        scheduler.start()
        await asyncio.sleep(0.06)
        await scheduler.stop()

        assert _CrashingCycle.calls >= 2
        assert scheduler.state.errors_total == _CrashingCycle.calls

    asyncio.run(_run())


@pytest.mark.unit
def test_scheduler_drains_queue_across_ticks() -> None:
    async def _run() -> None:
        repository = InMemoryRollRequestRepository()
        for index in range(4):
            await repository.insert_request(game_ref="g", chat_ref=f"c{index}", requester_ref="u")
        channel = StubNotificationChannel()
        cycle = ClaimCycle(
            repository=repository,
            processor=RequestProcessor(repository=repository, channel=channel),
            max_batch_size=2,
        )
        scheduler = CycleScheduler(cycle, poll_interval_ms=5)

        scheduler.start()
        for _ in range(100):
            if all(request.status != RequestStatus.PENDING for request in repository.list_requests()):
                break
            await asyncio.sleep(0.005)
        await scheduler.stop()

        assert all(request.status == RequestStatus.COMPLETED for request in repository.list_requests())
        assert scheduler.state.rows_completed_total == 4
        assert repository.open_connections == 0

    asyncio.run(_run())
