"""Chat channel adapters."""

from agentgate.channels.base import ChannelAdapter, TypingHeartbeat
from agentgate.channels.manager import ChannelManager

__all__ = ["ChannelAdapter", "ChannelManager", "TypingHeartbeat"]
