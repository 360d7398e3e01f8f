"""Configuration module."""

from chime.config.loader import load_config
from chime.config.models import (
    ChimeConfig,
    ConfigError,
    DatabaseConfig,
    SchedulerConfig,
    TelegramConfig,
)
from chime.config.paths import (
    get_chime_home,
    get_config_path,
    get_database_path,
    get_logs_path,
)

__all__ = [
    "ChimeConfig",
    "ConfigError",
    "DatabaseConfig",
    "SchedulerConfig",
    "TelegramConfig",
    "get_chime_home",
    "get_config_path",
    "get_database_path",
    "get_logs_path",
    "load_config",
]
