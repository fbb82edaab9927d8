"""Event types flowing between channels and the agent loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Union


@dataclass
class InboundAttachment:
    """File or media attached to an inbound message."""

    id: str | None = None
    name: str | None = None
    mime_type: str | None = None
    size: int | None = None
    url: str | None = None
    local_path: str | None = None
    kind: Literal["image", "file", "audio", "video"] | None = None


@dataclass
class InboundReaction:
    emoji: str
    message_id: str
    action: Literal["added", "removed"] = "added"


@dataclass
class InboundMessage:
    """A single message received from a chat channel."""

    channel: str  # telegram, slack, discord, signal, whatsapp, …
    chat_id: str  # Chat/group identifier
    user_id: str  # Platform-level user identifier
    text: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    user_name: str | None = None  # Display name ("Cameron")
    user_handle: str | None = None  # Handle without "@" ("cameron")
    message_id: str | None = None
    thread_id: str | None = None  # Slack thread_ts / Telegram topic
    is_group: bool = False
    group_name: str | None = None
    server_id: str | None = None  # Discord guild id
    was_mentioned: bool = False  # groups only
    reply_to_user: str | None = None
    attachments: list[InboundAttachment] = field(default_factory=list)
    is_listening_mode: bool = False  # update memory, suppress the reply

    @property
    def group_key(self) -> str:
        return f"{self.channel}:{self.chat_id}"


@dataclass
class ReactionEvent(InboundMessage):
    """A reaction added to / removed from an earlier message."""

    reaction: InboundReaction | None = None


@dataclass
class BatchMessage:
    """Burst of group messages flushed by the group batcher as one turn."""

    channel: str
    chat_id: str
    messages: list[InboundMessage]
    group_name: str | None = None
    server_id: str | None = None
    was_mentioned: bool = False
    is_listening_mode: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def group_key(self) -> str:
        return f"{self.channel}:{self.chat_id}"

    @property
    def thread_id(self) -> str | None:
        return self.messages[-1].thread_id if self.messages else None

    @property
    def message_id(self) -> str | None:
        return self.messages[-1].message_id if self.messages else None

    @classmethod
    def from_messages(cls, messages: list[InboundMessage]) -> BatchMessage:
        first = messages[0]
        return cls(
            channel=first.channel,
            chat_id=first.chat_id,
            messages=list(messages),
            group_name=next((m.group_name for m in messages if m.group_name), None),
            server_id=first.server_id,
            was_mentioned=any(m.was_mentioned for m in messages),
        )


# Anything the agent loop can turn into one agent turn.
Inbound = Union[InboundMessage, ReactionEvent, BatchMessage]


@dataclass
class OutboundMessage:
    """Text message to send to a chat channel."""

    chat_id: str
    text: str
    reply_to_message_id: str | None = None
    thread_id: str | None = None


@dataclass
class OutboundFile:
    """File or image to send to a chat channel."""

    chat_id: str
    file_path: str
    caption: str | None = None
    thread_id: str | None = None
    kind: Literal["image", "file"] = "file"


@dataclass(frozen=True, slots=True)
class SendResult:
    message_id: str
