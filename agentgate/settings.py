"""Centralised settings for agentgate, loaded from env / .env."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://api.letta.com"


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- general ---
    log_level: str = "INFO"
    log_to_file: bool = False

    # --- file-system paths ---
    state_dir: Path = Field(default_factory=lambda: Path.home() / ".agentgate")
    agent_store_file: str = "agent.json"
    credentials_dir_name: str = "credentials"
    skills_dir: Path | None = None  # bundled skills copied to new agents

    # --- agent backend ---
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    agent_id: str = ""  # overrides the persisted agent id when set
    agent_name: str = "agentgate"
    model: str = ""
    request_timeout_seconds: float = 10.0

    # --- turn tuning ---
    session_init_timeout_ms: int = 30_000
    stream_idle_timeout_ms: int = 60_000
    stream_edit_interval_ms: int = 500
    max_tool_calls: int = 100
    typing_interval_seconds: float = 4.0

    @property
    def agent_store_path(self) -> Path:
        return self.state_dir / self.agent_store_file

    @property
    def credentials_dir(self) -> Path:
        return self.state_dir / self.credentials_dir_name

    @property
    def log_file(self) -> Path | None:
        return self.state_dir / "logs" / "agentgate.log" if self.log_to_file else None


@lru_cache
def get_settings() -> GatewaySettings:
    s = GatewaySettings()
    s.state_dir.mkdir(parents=True, exist_ok=True)
    return s
