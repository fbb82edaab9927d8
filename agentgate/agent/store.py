"""Persisted agent record: the single agent + conversation all channels share."""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from agentgate.settings import DEFAULT_BASE_URL
from agentgate.utils.atomic_io import AtomicFileWriter, read_json
from agentgate.utils.helpers import isoformat_z, utc_now


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class LastMessageTarget(_CamelModel):
    """Where the most recent reply-eligible message came from."""

    channel: str
    chat_id: str
    message_id: str | None = None
    updated_at: str


class PersistedAgentRecord(_CamelModel):
    agent_id: str | None = None
    conversation_id: str | None = None
    base_url: str | None = None
    created_at: str | None = None
    last_used_at: str | None = None
    last_message_target: LastMessageTarget | None = None


def _normalize_url(url: str | None) -> str:
    return (url or DEFAULT_BASE_URL).rstrip("/")


class AgentStore:
    """Load once at startup, save atomically on every change."""

    def __init__(self, path: Path, agent_id_override: str | None = None) -> None:
        self.path = path
        self._override = agent_id_override or None
        self._writer = AtomicFileWriter()
        self.record = self._load()

    def _load(self) -> PersistedAgentRecord:
        raw = read_json(self.path, None)
        if raw is None:
            return PersistedAgentRecord()
        try:
            return PersistedAgentRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"Ignoring malformed agent store {self.path}: {exc}")
            return PersistedAgentRecord()

    async def save(self) -> None:
        data = self.record.model_dump(by_alias=True, exclude_none=True)
        if not await self._writer.write_json(self.path, data):
            logger.error(f"Agent store not saved: {self.path}")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def agent_id(self) -> str | None:
        return self.record.agent_id or self._override

    @property
    def conversation_id(self) -> str | None:
        return self.record.conversation_id

    @property
    def base_url(self) -> str | None:
        return self.record.base_url

    @property
    def last_message_target(self) -> LastMessageTarget | None:
        return self.record.last_message_target

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def set_agent(self, agent_id: str | None, base_url: str | None = None) -> None:
        """Record *agent_id* and the server it lives on."""
        now = isoformat_z(utc_now())
        self.record.agent_id = agent_id
        self.record.base_url = base_url
        self.record.last_used_at = now
        if agent_id and not self.record.created_at:
            self.record.created_at = now
        await self.save()

    async def set_conversation(self, conversation_id: str | None) -> None:
        self.record.conversation_id = conversation_id
        self.record.last_used_at = isoformat_z(utc_now())
        await self.save()

    async def set_last_message_target(
        self,
        channel: str,
        chat_id: str,
        message_id: str | None = None,
    ) -> None:
        self.record.last_message_target = LastMessageTarget(
            channel=channel,
            chat_id=chat_id,
            message_id=message_id,
            updated_at=isoformat_z(utc_now()),
        )
        await self.save()

    def is_server_mismatch(self, current_base_url: str | None) -> bool:
        """True when the stored agent was created on a different server."""
        if not self.record.agent_id or not self.record.base_url:
            return False
        return _normalize_url(self.record.base_url) != _normalize_url(current_base_url)

    async def reset(self) -> None:
        """Forget the agent entirely; the next turn creates a new one."""
        self.record = PersistedAgentRecord()
        await self.save()

    async def reset_conversation(self) -> None:
        """Drop the conversation id but keep the agent."""
        await self.set_conversation(None)
