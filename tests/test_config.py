"""Tests for configuration loading and models."""

from datetime import timedelta

import pytest
from pydantic import SecretStr, ValidationError

from chime.config.loader import load_config
from chime.config.models import (
    ChimeConfig,
    ConfigError,
    SchedulerConfig,
    TelegramConfig,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("TELEGRAM_BOT_TOKEN", "CHIME_DATABASE_URL", "CHIME_INSTANCE_ID"):
        monkeypatch.delenv(name, raising=False)


class TestTelegramConfig:
    """Tests for TelegramConfig model."""

    def test_defaults(self):
        config = TelegramConfig()
        assert config.bot_token is None
        assert config.allowed_users == []
        assert config.polling is True

    def test_polling_from_toml(self, tmp_path):
        config_path = tmp_path / "config.toml"
        config_path.write_text('[telegram]\nbot_token = "123:abc"\npolling = false\n')
        config = load_config(config_path)
        assert config.telegram is not None
        assert config.telegram.polling is False


class TestSchedulerConfig:
    """Tests for SchedulerConfig model."""

    def test_defaults(self):
        config = SchedulerConfig()
        assert config.poll_interval == 10.0
        assert config.lock_ttl == 60.0
        assert config.instance_id is None
        assert config.batch_size == 25
        assert config.retry_backoff == timedelta(minutes=5)
        assert config.snooze_prompt_ttl_delta == timedelta(minutes=2)
        assert config.reminders_enabled is True
        assert config.habits_enabled is True

    def test_lock_ttl_delta(self):
        assert SchedulerConfig(lock_ttl=30).lock_ttl_delta == timedelta(seconds=30)

    @pytest.mark.parametrize(
        "field,value",
        [("poll_interval", 0), ("lock_ttl", -1), ("batch_size", 0)],
    )
    def test_rejects_non_positive(self, field, value):
        with pytest.raises(ValidationError):
            SchedulerConfig(**{field: value})


class TestChimeConfig:
    """Tests for the root config model."""

    def test_minimal_config(self, minimal_config):
        assert minimal_config.timezone == "America/Chicago"
        assert minimal_config.telegram is None
        assert minimal_config.database.url is None

    def test_rejects_unknown_timezone(self):
        with pytest.raises(ValidationError, match="Unknown timezone"):
            ChimeConfig(timezone="Mars/Olympus")

    def test_require_bot_token(self):
        config = ChimeConfig(telegram=TelegramConfig(bot_token=SecretStr("t0ken")))
        assert config.require_bot_token() == "t0ken"

    def test_require_bot_token_missing(self, minimal_config):
        with pytest.raises(ConfigError, match="bot token"):
            minimal_config.require_bot_token()


class TestLoadConfig:
    """Tests for load_config()."""

    def test_load_from_file(self, config_file):
        config = load_config(config_file)
        assert config.timezone == "Europe/Berlin"
        assert config.telegram is not None
        assert config.telegram.allowed_users == ["@alice", "42"]
        assert config.scheduler.poll_interval == 5
        assert config.scheduler.lock_ttl == 30
        assert config.scheduler.batch_size == 10

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.toml")

    def test_invalid_toml(self, tmp_path):
        config_path = tmp_path / "invalid.toml"
        config_path.write_text("this is not valid toml [[[")
        with pytest.raises(ValueError):
            load_config(config_path)

    def test_invalid_config_values(self, tmp_path):
        config_path = tmp_path / "config.toml"
        config_path.write_text("[scheduler]\npoll_interval = -3\n")
        with pytest.raises(ValidationError):
            load_config(config_path)

    def test_no_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            "chime.config.loader._get_default_config_paths",
            lambda: [tmp_path / "missing.toml"],
        )
        config = load_config()
        assert config == ChimeConfig.model_validate({})

    def test_env_token_fills_missing(self, tmp_path, monkeypatch):
        config_path = tmp_path / "config.toml"
        config_path.write_text('timezone = "UTC"\n')
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "from-env")

        config = load_config(config_path)

        assert config.require_bot_token() == "from-env"

    def test_file_token_wins_over_env(self, config_file, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "from-env")
        config = load_config(config_file)
        assert config.require_bot_token().startswith("123456789:")

    def test_env_database_and_instance(self, tmp_path, monkeypatch):
        config_path = tmp_path / "config.toml"
        config_path.write_text("")
        monkeypatch.setenv("CHIME_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        monkeypatch.setenv("CHIME_INSTANCE_ID", "worker-1")

        config = load_config(config_path)

        assert config.database.url == "sqlite+aiosqlite:///:memory:"
        assert config.scheduler.instance_id == "worker-1"
