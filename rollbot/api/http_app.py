from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from rollbot.api.schemas import HealthResponse, ReadyResponse, SchedulerMetrics
from rollbot.services.lifecycle import LifecycleCoordinator
from rollbot.workers.scheduler import CycleScheduler


def build_app(
    source: str,
    run_id: str,
    scheduler: CycleScheduler | None = None,
    coordinator: LifecycleCoordinator | None = None,
) -> FastAPI:
    """Health surface for the worker; the worker lifecycle itself is owned by the coordinator."""
    logger = logging.getLogger("runtime")
    app = FastAPI(title="rollbot", version="0.1.0")
    logger.debug("health app built", extra={"source": source, "service": "http", "run_id": run_id})

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", source=source, mode=_mode(coordinator))

    @app.get(
        "/ready",
        response_model=ReadyResponse,
        responses={503: {"model": ReadyResponse}},
        tags=["System"],
    )
    async def ready() -> JSONResponse:
        shutting_down = coordinator is not None and coordinator.shutting_down
        scheduler_enabled = scheduler is not None
        scheduler_ready = True
        metrics: SchedulerMetrics | None = None
        if scheduler is not None:
            state = scheduler.state
            scheduler_ready = state.started and not state.stopped and scheduler.active
            metrics = SchedulerMetrics(
                started=state.started,
                stopped=state.stopped,
                cycle_running=state.cycle_running,
                ticks_total=state.ticks_total,
                skipped_ticks_total=state.skipped_ticks_total,
                cycles_total=state.cycles_total,
                idle_cycles_total=state.idle_cycles_total,
                rolled_back_total=state.rolled_back_total,
                errors_total=state.errors_total,
                rows_completed_total=state.rows_completed_total,
                rows_errored_total=state.rows_errored_total,
                conflicts_total=state.conflicts_total,
                last_cycle_at=state.last_cycle_at,
            )

        is_ready = scheduler_ready and not shutting_down
        payload = ReadyResponse(
            status="ready" if is_ready else "not_ready",
            source=source,
            mode=_mode(coordinator),
            scheduler_enabled=scheduler_enabled,
            scheduler_ready=scheduler_ready,
            shutting_down=shutting_down,
            scheduler_metrics=metrics,
        )
        return JSONResponse(status_code=200 if is_ready else 503, content=payload.model_dump(mode="json"))

    return app


def _mode(coordinator: LifecycleCoordinator | None) -> str:
    if coordinator is None:
        return "standalone"
    if coordinator.shutting_down:
        return "stopping"
    return "serving" if coordinator.started else "starting"
