"""Debounced batching of group-chat traffic.

Messages from one group are held while the group keeps talking and are
flushed as a single turn once it has been quiet for the channel's
debounce interval.  Each new message restarts the window.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from loguru import logger

from agentgate.bus.events import BatchMessage, Inbound, InboundMessage

if TYPE_CHECKING:
    from agentgate.channels.base import ChannelAdapter

DEFAULT_DEBOUNCE_MS = 5_000

FlushCallback = Callable[[Inbound, "ChannelAdapter"], None]


@dataclass
class GroupBatchSettings:
    """Per-channel debounce intervals plus instant / listening group keys.

    Keys are ``"<channel>:<chat_id>"`` (or ``"<channel>:<server_id>"``).
    """

    default_interval_ms: int = DEFAULT_DEBOUNCE_MS
    intervals_ms: dict[str, int] = field(default_factory=dict)
    instant_keys: set[str] = field(default_factory=set)
    listening_keys: set[str] = field(default_factory=set)

    def interval_for(self, channel: str) -> int:
        return self.intervals_ms.get(channel, self.default_interval_ms)


@dataclass
class GroupBatchState:
    messages: list[InboundMessage] = field(default_factory=list)
    adapter: ChannelAdapter | None = None
    timer: asyncio.TimerHandle | None = None


def _candidate_keys(msg: InboundMessage | BatchMessage) -> Iterable[str]:
    yield f"{msg.channel}:{msg.chat_id}"
    if msg.server_id:
        yield f"{msg.channel}:{msg.server_id}"


class GroupBatcher:
    def __init__(self, on_flush: FlushCallback, settings: GroupBatchSettings | None = None) -> None:
        self._on_flush = on_flush
        self.settings = settings or GroupBatchSettings()
        self._pending: dict[str, GroupBatchState] = {}

    def pending_count(self, key: str) -> int:
        state = self._pending.get(key)
        return len(state.messages) if state else 0

    def is_instant(self, msg: InboundMessage | BatchMessage) -> bool:
        if self.settings.interval_for(msg.channel) <= 0:
            return True
        return any(k in self.settings.instant_keys for k in _candidate_keys(msg))

    def is_listening(self, msg: InboundMessage | BatchMessage) -> bool:
        return any(k in self.settings.listening_keys for k in _candidate_keys(msg))

    def on_message(self, msg: InboundMessage, adapter: ChannelAdapter) -> None:
        """Accept one group message; dispatch now or (re)start the window."""
        key = msg.group_key
        if self.is_instant(msg):
            logger.debug(f"[Batcher] {key} is instant, dispatching")
            self._dispatch([msg], adapter)
            return

        state = self._pending.setdefault(key, GroupBatchState())
        state.messages.append(msg)
        state.adapter = adapter
        if state.timer is not None:
            state.timer.cancel()
        delay = self.settings.interval_for(msg.channel) / 1000
        state.timer = asyncio.get_running_loop().call_later(delay, self.flush, key)
        logger.debug(f"[Batcher] {key}: {len(state.messages)} pending, flush in {delay:.1f}s")

    def flush(self, key: str) -> None:
        state = self._pending.pop(key, None)
        if state is None:
            return
        if state.timer is not None:
            state.timer.cancel()
        if not state.messages or state.adapter is None:
            return
        self._dispatch(state.messages, state.adapter)

    def _dispatch(self, messages: list[InboundMessage], adapter: ChannelAdapter) -> None:
        item: InboundMessage | BatchMessage
        item = messages[0] if len(messages) == 1 else BatchMessage.from_messages(messages)
        if self.is_listening(item):
            # An explicit mention always gets a reply
            item = replace(item, is_listening_mode=not item.was_mentioned)
        logger.info(
            f"[Batcher] Flushing {item.channel}:{item.chat_id} "
            f"({len(messages)} message{'s' if len(messages) != 1 else ''}"
            f"{', listening' if item.is_listening_mode else ''})"
        )
        self._on_flush(item, adapter)

    def stop(self) -> None:
        """Cancel every pending window; buffered messages are dropped."""
        for key, state in self._pending.items():
            if state.timer is not None:
                state.timer.cancel()
            if state.messages:
                logger.warning(f"[Batcher] Dropping {len(state.messages)} buffered message(s) for {key}")
        self._pending.clear()
