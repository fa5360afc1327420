import logging
from pathlib import Path

import pytest

from rollbot.config import (
    HelperSettings,
    load_env_file,
    log_effective_settings,
    settings_from_env,
    validate_settings,
)
from rollbot.domain.errors import ConfigurationError

HELPER_ENV_VARS = (
    "HELPER_BOT_TOKEN",
    "DATABASE_URL",
    "HELPER_DB_POLL_INTERVAL_MS",
    "HELPER_MAX_REQUESTS_PER_CYCLE",
    "HELPER_SEND_TIMEOUT_MS",
    "DB_SSL",
    "DB_REJECT_UNAUTHORIZED",
    "DB_POOL_MAX_SIZE",
    "HELPER_REQUEST_SOURCE",
    "HELPER_TELEGRAM_API_BASE",
    "HELPER_LISTENER_POLL_TIMEOUT_S",
    "APP_HOST",
    "HELPER_HEALTH_PORT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in HELPER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.mark.unit
def test_settings_defaults_without_env() -> None:
    assert settings_from_env() == HelperSettings()


@pytest.mark.unit
def test_settings_read_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HELPER_BOT_TOKEN", " 123:abc ")
    monkeypatch.setenv("DATABASE_URL", "postgres://bot:bot@db:5432/casino")
    monkeypatch.setenv("HELPER_DB_POLL_INTERVAL_MS", "500")
    monkeypatch.setenv("HELPER_MAX_REQUESTS_PER_CYCLE", "20")
    monkeypatch.setenv("HELPER_SEND_TIMEOUT_MS", "2500")
    monkeypatch.setenv("DB_SSL", "false")
    monkeypatch.setenv("DB_REJECT_UNAUTHORIZED", "TRUE")
    monkeypatch.setenv("HELPER_REQUEST_SOURCE", "inline-trigger")
    monkeypatch.setenv("HELPER_HEALTH_PORT", "9100")

    settings = settings_from_env()

    assert settings.bot_token == "123:abc"
    assert settings.database_url == "postgres://bot:bot@db:5432/casino"
    assert settings.poll_interval_ms == 500
    assert settings.max_requests_per_cycle == 20
    assert settings.send_timeout_ms == 2500
    assert settings.db_ssl is False
    assert settings.db_reject_unauthorized is True
    assert settings.request_source == "inline-trigger"
    assert settings.http_port == 9100


@pytest.mark.unit
def test_settings_fall_back_on_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HELPER_DB_POLL_INTERVAL_MS", "abc")
    monkeypatch.setenv("HELPER_MAX_REQUESTS_PER_CYCLE", "0")
    monkeypatch.setenv("HELPER_SEND_TIMEOUT_MS", "-10")
    monkeypatch.setenv("HELPER_BOT_TOKEN", "   ")

    settings = settings_from_env()

    assert settings.poll_interval_ms == 3000
    assert settings.max_requests_per_cycle == 5
    assert settings.send_timeout_ms == 10000
    assert settings.bot_token is None


@pytest.mark.unit
def test_ssl_flag_is_enabled_only_by_literal_true(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_SSL", "yes")
    assert settings_from_env().db_ssl is False


@pytest.mark.unit
def test_validate_settings_requires_token() -> None:
    with pytest.raises(ConfigurationError, match="HELPER_BOT_TOKEN"):
        validate_settings(HelperSettings(database_url="postgres://localhost/db"))


@pytest.mark.unit
def test_validate_settings_requires_database_for_queue_poll() -> None:
    with pytest.raises(ConfigurationError, match="DATABASE_URL"):
        validate_settings(HelperSettings(bot_token="123:abc"))


@pytest.mark.unit
def test_inline_trigger_runs_without_database() -> None:
    settings = HelperSettings(bot_token="123:abc", request_source="inline-trigger")
    assert validate_settings(settings) is settings


@pytest.mark.unit
def test_validate_settings_rejects_unknown_source() -> None:
    with pytest.raises(ConfigurationError, match="Unsupported request source 'cron'"):
        validate_settings(HelperSettings(bot_token="123:abc", request_source="cron"))


@pytest.mark.unit
def test_env_file_values_do_not_override_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("HELPER_BOT_TOKEN=from-file\nHELPER_DB_POLL_INTERVAL_MS=1500\n", encoding="utf-8")
    monkeypatch.setenv("HELPER_BOT_TOKEN", "from-env")
    # load_dotenv writes into os.environ; register the key so monkeypatch restores it.
    monkeypatch.setenv("HELPER_DB_POLL_INTERVAL_MS", "")
    monkeypatch.delenv("HELPER_DB_POLL_INTERVAL_MS")

    assert load_env_file(env_file) is True
    settings = settings_from_env()

    assert settings.bot_token == "from-env"
    assert settings.poll_interval_ms == 1500


@pytest.mark.unit
def test_default_env_file_is_found_from_working_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("HELPER_BOT_TOKEN=from-cwd\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HELPER_BOT_TOKEN", "")
    monkeypatch.delenv("HELPER_BOT_TOKEN")

    assert load_env_file() is True
    assert settings_from_env().bot_token == "from-cwd"


@pytest.mark.unit
def test_missing_env_file_is_a_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="env file not found"):
        load_env_file(tmp_path / "missing.env")


@pytest.mark.unit
def test_effective_settings_log_omits_credentials(caplog: pytest.LogCaptureFixture) -> None:
    settings = HelperSettings(bot_token="123:very-secret", database_url="postgres://u:pw@db/casino")

    with caplog.at_level(logging.INFO, logger="runtime"):
        log_effective_settings(settings, run_id="run-1")

    record = caplog.records[-1]
    assert record.getMessage() == "helper settings loaded"
    assert record.poll_interval_ms == 3000
    assert "very-secret" not in caplog.text
    assert "pw@db" not in caplog.text
    assert not hasattr(record, "database_url")
