"""Configuration models using Pydantic."""

import logging
from datetime import timedelta
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from chime.config.paths import get_database_path

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Chicago"


class ConfigError(Exception):
    """Configuration error."""

    pass


class TelegramConfig(BaseModel):
    """Configuration for the Telegram delivery gateway."""

    bot_token: SecretStr | None = None
    allowed_users: list[str] = []
    # Only one process per bot token may poll for updates; the rest only send
    polling: bool = True


class DatabaseConfig(BaseModel):
    """Configuration for the job store database.

    ``url`` takes precedence; otherwise a SQLite file at ``path`` is used.
    """

    url: str | None = None
    path: Path = Field(default_factory=get_database_path)


class SchedulerConfig(BaseModel):
    """Dispatcher tuning.

    All durations are in seconds unless the name says otherwise.
    """

    poll_interval: float = 10.0
    lock_ttl: float = 60.0
    # None = generated per process (hostname + pid + random suffix)
    instance_id: str | None = None
    batch_size: int = 25
    retry_backoff_minutes: int = 5
    snooze_prompt_ttl: float = 120.0
    reminders_enabled: bool = True
    habits_enabled: bool = True

    @field_validator("poll_interval", "lock_ttl", "snooze_prompt_ttl")
    @classmethod
    def _positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("batch_size", "retry_backoff_minutes")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def lock_ttl_delta(self) -> timedelta:
        return timedelta(seconds=self.lock_ttl)

    @property
    def retry_backoff(self) -> timedelta:
        return timedelta(minutes=self.retry_backoff_minutes)

    @property
    def snooze_prompt_ttl_delta(self) -> timedelta:
        return timedelta(seconds=self.snooze_prompt_ttl)


class ChimeConfig(BaseModel):
    """Root configuration model."""

    # Fallback zone for jobs stored without a timezone
    timezone: str = DEFAULT_TIMEZONE
    telegram: TelegramConfig | None = None
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @model_validator(mode="after")
    def _warn_lock_ttl(self) -> "ChimeConfig":
        """Warn when the lock could expire between two polls of a slow tick."""
        if self.scheduler.lock_ttl < self.scheduler.poll_interval:
            logger.warning(
                "lock_ttl_below_poll_interval",
                extra={
                    "scheduler.lock_ttl": self.scheduler.lock_ttl,
                    "scheduler.poll_interval": self.scheduler.poll_interval,
                },
            )
        return self

    def require_bot_token(self) -> str:
        """Return the Telegram bot token.

        Raises:
            ConfigError: If no token is configured.
        """
        if self.telegram is None or self.telegram.bot_token is None:
            raise ConfigError(
                "Telegram bot token not configured. "
                "Set [telegram].bot_token or TELEGRAM_BOT_TOKEN."
            )
        return self.telegram.bot_token.get_secret_value()
