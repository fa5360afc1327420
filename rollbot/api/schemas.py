from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SchedulerMetrics(BaseModel):
    started: bool
    stopped: bool
    cycle_running: bool
    ticks_total: int
    skipped_ticks_total: int
    cycles_total: int
    idle_cycles_total: int
    rolled_back_total: int
    errors_total: int
    rows_completed_total: int
    rows_errored_total: int
    conflicts_total: int
    last_cycle_at: datetime | None = None


class HealthResponse(BaseModel):
    status: str
    source: str
    mode: str


class ReadyResponse(BaseModel):
    status: str
    source: str
    mode: str
    scheduler_enabled: bool
    scheduler_ready: bool
    shutting_down: bool
    scheduler_metrics: SchedulerMetrics | None = None
