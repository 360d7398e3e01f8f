"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from chime.config.models import ChimeConfig
from chime.config.paths import get_config_path


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("config.toml"),  # Current directory
        get_config_path(),  # ~/.chime/config.toml (or CHIME_HOME)
        Path("/etc/chime/config.toml"),  # System-wide
    ]


def _resolve_env(config: dict[str, Any]) -> dict[str, Any]:
    """Fill secrets and scalar overrides from the environment."""
    token = os.environ.get("TELEGRAM_BOT_TOKEN")
    if token:
        telegram = config.setdefault("telegram", {})
        if telegram.get("bot_token") is None:
            telegram["bot_token"] = SecretStr(token)

    if url := os.environ.get("CHIME_DATABASE_URL"):
        config.setdefault("database", {}).setdefault("url", url)

    if instance_id := os.environ.get("CHIME_INSTANCE_ID"):
        config.setdefault("scheduler", {}).setdefault("instance_id", instance_id)

    return config


def load_config(path: Path | None = None) -> ChimeConfig:
    """Load configuration from TOML file.

    Args:
        path: Explicit path to config file. If None, searches default locations.
            When no file exists anywhere, defaults plus environment are used.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ValueError: If config file is invalid.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in _get_default_config_paths():
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    raw_config: dict[str, Any] = {}
    if config_path is not None:
        with config_path.open("rb") as f:
            raw_config = tomllib.load(f)

    return ChimeConfig.model_validate(_resolve_env(raw_config))
