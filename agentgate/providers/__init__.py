"""Agent backends."""

from agentgate.providers.base import (
    AgentBackend,
    AgentSessionHandle,
    CreateOptions,
    MemoryBlock,
    SessionMode,
    SessionState,
    StreamEvent,
)
from agentgate.providers.letta import LettaBackend, LettaSession

__all__ = [
    "AgentBackend",
    "AgentSessionHandle",
    "CreateOptions",
    "LettaBackend",
    "LettaSession",
    "MemoryBlock",
    "SessionMode",
    "SessionState",
    "StreamEvent",
]
