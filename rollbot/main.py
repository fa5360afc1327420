from __future__ import annotations

import argparse
import asyncio
from collections.abc import Generator
from contextlib import contextmanager, suppress
from dataclasses import replace
import logging
from pathlib import Path
import signal
import sys
import uuid

import uvicorn

from rollbot.api.http_app import build_app
from rollbot.config import (
    HelperSettings,
    load_env_file,
    log_effective_settings,
    settings_from_env,
    validate_settings,
)
from rollbot.domain.errors import ConfigurationError, ConnectivityError
from rollbot.logging_setup import configure_logging
from rollbot.services.bootstrap import RuntimeContainer, build_runtime_container
from rollbot.sources import SUPPORTED_SOURCES, validate_source

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the lifecycle coordinator."""

    @contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        yield


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Animated emoji helper bot")
    parser.add_argument("--source", default=None, help="Request source: queue-poll or inline-trigger")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--no-http", action="store_true", help="Do not serve /health and /ready")
    parser.add_argument("--env-file", type=Path, default=None, help="Path to a .env file")
    parser.add_argument("--no-dotenv", action="store_true", help="Skip loading .env file")
    parser.add_argument(
        "--dry-run-startup",
        action="store_true",
        help="Validate configuration and exit",
    )
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> HelperSettings:
    if not args.no_dotenv:
        load_env_file(args.env_file)
    settings = settings_from_env()
    if args.source is not None:
        settings = replace(settings, request_source=args.source)
    if args.host is not None:
        settings = replace(settings, http_host=args.host)
    if args.port is not None:
        settings = replace(settings, http_port=args.port)
    return validate_settings(settings)


async def serve(
    settings: HelperSettings,
    *,
    run_id: str,
    http_enabled: bool = True,
    container: RuntimeContainer | None = None,
) -> int:
    logger = logging.getLogger("runtime")
    if container is None:
        container = build_runtime_container(settings, run_id=run_id)
    coordinator = container.coordinator
    extra: dict[str, object] = {"source": settings.request_source, "service": "runtime", "run_id": run_id}

    server: EmbeddedServer | None = None
    server_task: asyncio.Task[None] | None = None
    if http_enabled:
        app = build_app(
            source=settings.request_source,
            run_id=run_id,
            scheduler=container.scheduler,
            coordinator=coordinator,
        )
        server = EmbeddedServer(
            uvicorn.Config(app, host=settings.http_host, port=settings.http_port, log_level="warning")
        )
        server_task = asyncio.create_task(_serve_http(server, extra))

    try:
        await coordinator.startup()
    except ConnectivityError as exc:
        logger.error("critical startup error", extra={**extra, "detail": str(exc)})
        await _stop_server(server, server_task)
        return 1

    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, coordinator.request_shutdown, sig.name)

    try:
        await coordinator.wait_stopped()
    finally:
        for sig in SHUTDOWN_SIGNALS:
            with suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
        await _stop_server(server, server_task)
    return 0


async def _serve_http(server: EmbeddedServer, extra: dict[str, object]) -> None:
    try:
        await server.serve()
    except SystemExit:
        # uvicorn calls sys.exit(1) when the port cannot be bound.
        logging.getLogger("runtime").error(
            "health server failed to start, continuing without http",
            extra={**extra, "detail": f"could not serve on {server.config.host}:{server.config.port}"},
        )


async def _stop_server(server: EmbeddedServer | None, server_task: asyncio.Task[None] | None) -> None:
    if server is None or server_task is None:
        return
    server.should_exit = True
    await server_task


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.source is not None:
        try:
            validate_source(args.source)
        except ValueError as exc:
            supported = ", ".join(SUPPORTED_SOURCES)
            sys.stderr.write(f"ERROR: {exc}\n")
            sys.stderr.write(f"Try one of: {supported}\n")
            return 2

    configure_logging()
    run_id = str(uuid.uuid4())
    logger = logging.getLogger("runtime")

    try:
        settings = load_settings(args)
    except ConfigurationError as exc:
        sys.stderr.write(f"FATAL ERROR: {exc}\n")
        logger.error("fatal configuration error", extra={"service": "runtime", "run_id": run_id, "detail": str(exc)})
        return 1

    log_effective_settings(settings, run_id=run_id)
    if args.dry_run_startup:
        logger.info(
            "dry-run startup complete",
            extra={"source": settings.request_source, "service": "runtime", "run_id": run_id},
        )
        return 0

    return asyncio.run(serve(settings, run_id=run_id, http_enabled=not args.no_http))


if __name__ == "__main__":
    raise SystemExit(run())
