"""Configuration loading utilities."""

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from loguru import logger

from agentgate.agent.batcher import GroupBatchSettings
from agentgate.config.schema import DEFAULT_GROUP_DEBOUNCE_MS, Config, GroupBatchingConfig

# Load .env into os.environ (won't overwrite existing env vars)
load_dotenv(override=False)


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".agentgate" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, then apply env-var overrides.

    Priority (highest → lowest):
        1. AGENTGATE_* environment variables / .env
        2. ~/.agentgate/config.json
        3. Built-in defaults
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            config = Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using defaults")
            config = Config()
    else:
        config = Config()

    _apply_env_overrides(config)
    return config


# ---------------------------------------------------------------------------
# Flat env-var overrides
# ---------------------------------------------------------------------------


def _split_csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _apply_env_overrides(config: Config) -> None:
    """Apply flat AGENTGATE_* env vars on top of the loaded config."""
    telegram = config.channels.telegram
    if val := os.environ.get("AGENTGATE_TELEGRAM_TOKEN"):
        telegram.token = val
        telegram.enabled = True
    if val := os.environ.get("AGENTGATE_TELEGRAM_PROXY"):
        telegram.proxy = val
    if val := os.environ.get("AGENTGATE_TELEGRAM_DM_POLICY"):
        if val in ("pairing", "allowlist", "open"):
            telegram.dm_policy = val  # type: ignore[assignment]
        else:
            logger.warning(f"Ignoring unknown AGENTGATE_TELEGRAM_DM_POLICY={val!r}")
    if val := os.environ.get("AGENTGATE_TELEGRAM_ALLOW_FROM"):
        telegram.allow_from = _split_csv(val)
    if val := os.environ.get("AGENTGATE_TELEGRAM_GROUP_DEBOUNCE_SEC"):
        telegram.group_debounce_sec = float(val)
        telegram.group_debounce_ms = None
    if val := os.environ.get("AGENTGATE_TELEGRAM_INSTANT_GROUPS"):
        telegram.instant_groups = _split_csv(val)
    if val := os.environ.get("AGENTGATE_TELEGRAM_LISTENING_GROUPS"):
        telegram.listening_groups = _split_csv(val)


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump(exclude_none=True))

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def build_group_settings(config: Config) -> GroupBatchSettings:
    """Derive the group batcher's intervals and key sets from *config*."""
    settings = GroupBatchSettings(default_interval_ms=DEFAULT_GROUP_DEBOUNCE_MS)
    for channel in type(config.channels).model_fields:
        section = getattr(config.channels, channel)
        if not isinstance(section, GroupBatchingConfig):
            continue
        settings.intervals_ms[channel] = section.debounce_ms
        settings.instant_keys.update(f"{channel}:{gid}" for gid in section.instant_groups)
        settings.listening_keys.update(f"{channel}:{gid}" for gid in section.listening_groups)
    return settings


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    first, *rest = name.split("_")
    return first + "".join(word.capitalize() for word in rest)
