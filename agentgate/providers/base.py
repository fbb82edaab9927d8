"""Agent backend interface.

A backend hands out :class:`AgentSessionHandle` objects, each bound to one
agent id + conversation id for the duration of exactly one turn.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agentgate.errors import SessionClosedError


class SessionState(str, Enum):
    RESUMING_CONVERSATION = "resuming_conversation"
    RESUMING_DEFAULT = "resuming_default"
    CREATING_NEW = "creating_new"
    ACTIVE = "active"
    CLOSED = "closed"


# Modes a handle can be opened in (the first three states).
SessionMode = SessionState


@dataclass
class MemoryBlock:
    label: str
    value: str
    description: str | None = None
    limit: int | None = None


@dataclass
class CreateOptions:
    """Payload used only when a brand-new agent has to be created."""

    system_prompt: str = ""
    memory: list[MemoryBlock] = field(default_factory=list)
    name: str | None = None
    model: str | None = None


@dataclass
class StreamEvent:
    """One typed fragment of a streamed agent response."""

    type: str  # assistant | reasoning | tool_call | tool_result | result | …
    content: str = ""
    uuid: str | None = None  # originating message id (bubble boundary)
    tool_call_id: str | None = None
    tool_name: str | None = None
    is_error: bool = False
    result: str | None = None
    success: bool | None = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.type == "result"


class AgentSessionHandle(ABC):
    """Ephemeral, single-use session for one turn."""

    def __init__(self, mode: SessionMode, agent_id: str | None, conversation_id: str | None) -> None:
        self.mode = mode
        self.state = mode
        self.agent_id = agent_id
        self.conversation_id = conversation_id

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def _ensure_open(self) -> None:
        if self.closed:
            raise SessionClosedError(f"session {self.conversation_id or self.agent_id} is closed")

    async def initialize(self) -> None:
        """Resolve/create the agent and conversation; moves to ACTIVE."""
        self._ensure_open()
        await self._initialize()
        self.state = SessionState.ACTIVE

    async def send(self, text: str) -> None:
        self._ensure_open()
        if self.state is not SessionState.ACTIVE:
            raise RuntimeError("send() before initialize()")
        await self._send(text)

    def stream(self) -> AsyncIterator[StreamEvent]:
        self._ensure_open()
        return self._stream()

    async def abort(self) -> None:
        """Ask the backend to cancel the in-flight run."""
        if not self.closed:
            await self._abort()

    async def close(self) -> None:
        if self.closed:
            return
        self.state = SessionState.CLOSED
        await self._close()

    @abstractmethod
    async def _initialize(self) -> None: ...

    @abstractmethod
    async def _send(self, text: str) -> None: ...

    @abstractmethod
    def _stream(self) -> AsyncIterator[StreamEvent]: ...

    @abstractmethod
    async def _abort(self) -> None: ...

    @abstractmethod
    async def _close(self) -> None: ...


class AgentBackend(ABC):
    """Factory for session handles plus a few agent-level calls."""

    base_url: str = ""

    @abstractmethod
    def open_session(
        self,
        mode: SessionMode,
        agent_id: str | None = None,
        conversation_id: str | None = None,
        create_options: CreateOptions | None = None,
    ) -> AgentSessionHandle:
        """Return a fresh, uninitialized handle."""

    @abstractmethod
    async def rename_agent(self, agent_id: str, name: str) -> bool: ...

    async def aclose(self) -> None:
        """Release shared resources (HTTP pools, …)."""
