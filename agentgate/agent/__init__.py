"""Agent core module."""

from agentgate.agent.batcher import GroupBatcher, GroupBatchSettings
from agentgate.agent.loop import AgentLoop
from agentgate.agent.session import SessionOrchestrator
from agentgate.agent.store import AgentStore
from agentgate.agent.stream import StreamAggregator
from agentgate.agent.watchdog import StreamWatchdog

__all__ = [
    "AgentLoop",
    "AgentStore",
    "GroupBatchSettings",
    "GroupBatcher",
    "SessionOrchestrator",
    "StreamAggregator",
    "StreamWatchdog",
]
