"""Inbound/outbound event types and the single-flight turn queue."""

from agentgate.bus.events import (
    BatchMessage,
    Inbound,
    InboundAttachment,
    InboundMessage,
    InboundReaction,
    OutboundFile,
    OutboundMessage,
    ReactionEvent,
    SendResult,
)
from agentgate.bus.queue import MessageQueue, QueueEntry

__all__ = [
    "BatchMessage",
    "Inbound",
    "InboundAttachment",
    "InboundMessage",
    "InboundReaction",
    "MessageQueue",
    "OutboundFile",
    "OutboundMessage",
    "QueueEntry",
    "ReactionEvent",
    "SendResult",
]
