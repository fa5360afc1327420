from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging

from rollbot.domain.contracts import NotificationChannel, RequestSource, RollRequestRepository
from rollbot.domain.errors import ConnectivityError

logger = logging.getLogger("runtime")


@dataclass
class LifecycleCoordinator:
    source: RequestSource
    channel: NotificationChannel
    repository: RollRequestRepository | None = None
    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    run_id: str = ""
    started: bool = False
    shutting_down: bool = False
    _stopped: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _shutdown_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    async def startup(self) -> None:
        """Verify store and channel connectivity, then start serving requests.

        Raises ConnectivityError when either check fails; resources opened so
        far are released before the error propagates.
        """
        extra = self._extra()
        logger.info("helper bot initializing", extra=extra)
        try:
            if self.on_startup is not None:
                await self.on_startup()
            if self.repository is not None:
                await self.repository.ping()
                logger.info("store connectivity verified", extra=extra)
        except Exception as exc:
            await self._close_resources()
            raise ConnectivityError(f"store is unreachable: {type(exc).__name__}: {exc}") from exc

        try:
            identity = await self.channel.get_me()
        except Exception as exc:
            await self._close_resources()
            raise ConnectivityError(f"channel handshake failed: {type(exc).__name__}: {exc}") from exc
        logger.info(
            "connected to telegram",
            extra={**extra, "bot_username": identity.get("username")},
        )

        await self.source.start()
        await self.channel.start_listener()
        self.started = True
        logger.info("helper bot operational", extra=extra)

    def request_shutdown(self, signal_name: str) -> None:
        if self.shutting_down or self._shutdown_task is not None:
            logger.info("shutdown already in progress", extra={**self._extra(), "signal": signal_name})
            return
        self._shutdown_task = asyncio.create_task(self.shutdown(signal_name))

    async def shutdown(self, signal_name: str = "shutdown") -> None:
        if self.shutting_down:
            logger.info("shutdown already in progress", extra={**self._extra(), "signal": signal_name})
            return
        self.shutting_down = True
        extra = {**self._extra(), "signal": signal_name}
        logger.info("helper bot shutting down", extra=extra)

        # In-flight cycles finish on their own; only new ones are prevented.
        if self.started:
            await self.source.stop()
        await self._close_resources()
        self._stopped.set()
        logger.info("helper bot shutdown complete", extra=extra)

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def _close_resources(self) -> None:
        try:
            await self.channel.stop_listener()
        except Exception:
            logger.exception("stopping telegram listener failed", extra=self._extra())
        try:
            await self.channel.aclose()
        except Exception:
            logger.exception("closing telegram client failed", extra=self._extra())
        if self.on_shutdown is not None:
            try:
                await self.on_shutdown()
            except Exception:
                logger.exception("closing postgres pool failed", extra=self._extra())

    def _extra(self) -> dict[str, object]:
        return {"source": self.source.name, "service": "lifecycle", "run_id": self.run_id}
