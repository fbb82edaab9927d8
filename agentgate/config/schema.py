"""Configuration schema (``~/.agentgate/config.json``)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from agentgate.pairing.types import DmPolicy

DEFAULT_GROUP_DEBOUNCE_MS = 5_000


def _stringify_ids(value: Any) -> list[str]:
    """Accept a list or comma-separated string; large numeric ids may arrive as ints."""
    if value is None:
        return []
    if isinstance(value, (str, int)):
        value = str(value).split(",")
    return [str(v).strip() for v in value if str(v).strip()]


class GroupBatchingConfig(BaseModel):
    """Group-chat behaviour shared by every channel section."""

    group_debounce_ms: int | None = None
    group_debounce_sec: float | None = None  # 0 = dispatch immediately
    instant_groups: list[str] = Field(default_factory=list)  # chat ids that bypass batching
    listening_groups: list[str] = Field(default_factory=list)  # observe only unless mentioned

    @field_validator("instant_groups", "listening_groups", mode="before")
    @classmethod
    def _stringify_groups(cls, value: Any) -> list[str]:
        return _stringify_ids(value)

    @property
    def debounce_ms(self) -> int:
        if self.group_debounce_ms is not None:
            return max(0, self.group_debounce_ms)
        if self.group_debounce_sec is not None:
            return max(0, int(self.group_debounce_sec * 1000))
        return DEFAULT_GROUP_DEBOUNCE_MS


class TelegramConfig(GroupBatchingConfig):
    enabled: bool = False
    token: str = ""
    proxy: str | None = None
    dm_policy: DmPolicy = "pairing"
    allow_from: list[str] = Field(default_factory=list)  # static allowlist (user ids)
    require_mention: bool = False  # groups: only react when @mentioned

    @field_validator("allow_from", mode="before")
    @classmethod
    def _stringify_users(cls, value: Any) -> list[str]:
        return _stringify_ids(value)


class ChannelsConfig(BaseModel):
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)


class Config(BaseModel):
    """Root configuration."""

    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
