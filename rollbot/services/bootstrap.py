from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from rollbot.clients.telegram import TelegramNotificationChannel
from rollbot.config import HelperSettings
from rollbot.domain.contracts import InteractiveChannel, RequestSource, RollRequestRepository
from rollbot.domain.errors import ConfigurationError
from rollbot.repositories.postgres import AsyncpgPoolManager, PostgresRollRequestRepository
from rollbot.services.lifecycle import LifecycleCoordinator
from rollbot.sources import InlineTriggerSource, QueuePollSource, validate_source
from rollbot.workers.cycle import ClaimCycle
from rollbot.workers.processor import RequestProcessor
from rollbot.workers.scheduler import CycleScheduler


@dataclass
class RuntimeContainer:
    settings: HelperSettings
    channel: InteractiveChannel
    repository: RollRequestRepository | None
    scheduler: CycleScheduler | None
    source: RequestSource
    coordinator: LifecycleCoordinator


def build_runtime_container(
    settings: HelperSettings,
    *,
    run_id: str = "",
    channel: InteractiveChannel | None = None,
    repository: RollRequestRepository | None = None,
) -> RuntimeContainer:
    mode = validate_source(settings.request_source)

    if channel is None:
        if not settings.bot_token:
            raise ConfigurationError("HELPER_BOT_TOKEN is not defined for the helper bot")
        channel = TelegramNotificationChannel(
            settings.bot_token,
            api_base=settings.telegram_api_base,
            poll_timeout_s=settings.listener_poll_timeout_s,
        )

    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    scheduler: CycleScheduler | None = None
    source: RequestSource
    if mode.needs_database:
        if repository is None:
            repository, on_startup, on_shutdown = _postgres_repository(settings)
        processor = RequestProcessor(
            repository=repository,
            channel=channel,
            send_timeout_ms=settings.send_timeout_ms,
        )
        cycle = ClaimCycle(
            repository=repository,
            processor=processor,
            max_batch_size=settings.max_requests_per_cycle,
        )
        scheduler = CycleScheduler(cycle, poll_interval_ms=settings.poll_interval_ms)
        source = QueuePollSource(scheduler)
    else:
        source = InlineTriggerSource(channel)

    coordinator = LifecycleCoordinator(
        source=source,
        channel=channel,
        repository=repository if mode.needs_database else None,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
        run_id=run_id,
    )
    return RuntimeContainer(
        settings=settings,
        channel=channel,
        repository=repository,
        scheduler=scheduler,
        source=source,
        coordinator=coordinator,
    )


def _postgres_repository(
    settings: HelperSettings,
) -> tuple[RollRequestRepository, Callable[[], Awaitable[None]], Callable[[], Awaitable[None]]]:
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not defined, the helper bot cannot connect to PostgreSQL")
    pool_manager = AsyncpgPoolManager(
        dsn=settings.database_url,
        use_ssl=settings.db_ssl,
        reject_unauthorized=settings.db_reject_unauthorized,
        max_size=settings.db_pool_max_size,
    )
    return PostgresRollRequestRepository(pool_manager=pool_manager), pool_manager.startup, pool_manager.shutdown
