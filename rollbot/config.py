from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from rollbot.clients.telegram import DEFAULT_API_BASE
from rollbot.domain.errors import ConfigurationError
from rollbot.sources import validate_source

logger = logging.getLogger("runtime")


@dataclass(frozen=True)
class HelperSettings:
    bot_token: str | None = None
    database_url: str | None = None
    poll_interval_ms: int = 3000
    max_requests_per_cycle: int = 5
    send_timeout_ms: int = 10000
    db_ssl: bool = True
    db_reject_unauthorized: bool = False
    db_pool_max_size: int = 5
    request_source: str = "queue-poll"
    telegram_api_base: str = DEFAULT_API_BASE
    listener_poll_timeout_s: int = 25
    http_host: str = "0.0.0.0"
    http_port: int = 8100


def settings_from_env() -> HelperSettings:
    return HelperSettings(
        bot_token=_env_str("HELPER_BOT_TOKEN"),
        database_url=_env_str("DATABASE_URL"),
        poll_interval_ms=_env_int("HELPER_DB_POLL_INTERVAL_MS", 3000),
        max_requests_per_cycle=_env_int("HELPER_MAX_REQUESTS_PER_CYCLE", 5),
        send_timeout_ms=_env_int("HELPER_SEND_TIMEOUT_MS", 10000),
        db_ssl=_env_bool("DB_SSL", True),
        db_reject_unauthorized=_env_bool("DB_REJECT_UNAUTHORIZED", False),
        db_pool_max_size=_env_int("DB_POOL_MAX_SIZE", 5),
        request_source=os.getenv("HELPER_REQUEST_SOURCE", "queue-poll"),
        telegram_api_base=os.getenv("HELPER_TELEGRAM_API_BASE", DEFAULT_API_BASE),
        listener_poll_timeout_s=_env_int("HELPER_LISTENER_POLL_TIMEOUT_S", 25),
        http_host=os.getenv("APP_HOST", "0.0.0.0"),
        http_port=_env_int("HELPER_HEALTH_PORT", 8100),
    )


def validate_settings(settings: HelperSettings) -> HelperSettings:
    try:
        mode = validate_source(settings.request_source)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    if not settings.bot_token:
        raise ConfigurationError("HELPER_BOT_TOKEN is not defined for the helper bot")
    if mode.needs_database and not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not defined, the helper bot cannot connect to PostgreSQL")
    return settings


def load_env_file(env_file: Path | None = None) -> bool:
    """Load a .env file without overriding variables already set in the environment."""
    if env_file is not None:
        if not env_file.exists():
            raise ConfigurationError(f"env file not found: {env_file}")
        return load_dotenv(env_file, override=False)
    return load_dotenv(find_dotenv(usecwd=True), override=False)


def log_effective_settings(settings: HelperSettings, *, run_id: str) -> None:
    # Never log the token or the connection string; they carry credentials.
    logger.info(
        "helper settings loaded",
        extra={
            "service": "config",
            "run_id": run_id,
            "source": settings.request_source,
            "poll_interval_ms": settings.poll_interval_ms,
            "max_requests_per_cycle": settings.max_requests_per_cycle,
            "send_timeout_ms": settings.send_timeout_ms,
            "db_ssl": settings.db_ssl,
            "db_reject_unauthorized": settings.db_reject_unauthorized,
        },
    )


def _env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() == "true"
