"""Turns a stream of agent events into chat message "bubbles".

One buffer and at most one sent message id per bubble.  A bubble ends
when the event type changes or a new assistant message starts; on
channels that can edit, the open bubble is also pushed out every
``edit_interval_ms`` and then edited in place as more text arrives.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable
from typing import TYPE_CHECKING

from loguru import logger

from agentgate.bus.events import OutboundMessage
from agentgate.providers.base import StreamEvent

if TYPE_CHECKING:
    from agentgate.channels.base import ChannelAdapter

NO_REPLY_MARKER = "<no-reply/>"
NO_RESPONSE_TEXT = "(No response from agent. Try sending your message again.)"
DEFAULT_EDIT_INTERVAL_MS = 500


class StreamAggregator:
    def __init__(
        self,
        adapter: ChannelAdapter,
        chat_id: str,
        thread_id: str | None = None,
        *,
        edit_interval_ms: int = DEFAULT_EDIT_INTERVAL_MS,
        suppress: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adapter = adapter
        self.chat_id = chat_id
        self.thread_id = thread_id
        self.edit_interval = edit_interval_ms / 1000
        self.suppress = suppress  # listening mode: nothing reaches the chat
        self._clock = clock
        self._can_edit = adapter.supports_editing()

        self.buffer = ""
        self.message_id: str | None = None
        self.delivered = False
        self.counts: Counter[str] = Counter()
        self._last_type: str | None = None
        self._last_uuid: str | None = None
        self._last_flush = clock()

    @property
    def has_pending_text(self) -> bool:
        return bool(self.buffer.strip())

    async def feed(self, event: StreamEvent) -> None:
        self.counts[event.type] += 1

        if self._last_type is not None and event.type != self._last_type and self.has_pending_text:
            await self.flush_bubble()
        if event.type != self._last_type:
            logger.debug(f"[Stream] {self.chat_id}: {event.type}")
        self._last_type = event.type

        if event.type != "assistant":
            return

        if event.uuid and self._last_uuid and event.uuid != self._last_uuid and self.has_pending_text:
            await self.flush_bubble()
        self._last_uuid = event.uuid or self._last_uuid

        self.buffer += event.content
        await self._maybe_stream_edit()

    def replace_text(self, text: str) -> None:
        """Replace the open bubble's text (e.g. with a failure notice)."""
        self.buffer = text

    async def flush_bubble(self) -> None:
        """Close the open bubble: send or edit its final text."""
        text = self.buffer.strip()
        if text == NO_REPLY_MARKER:
            logger.info(f"[Stream] {self.chat_id}: agent chose not to reply")
            self.delivered = True
        elif text and not self.suppress:
            try:
                await self._push(text)
            except Exception as e:
                logger.warning(f"[Stream] Flush to {self.adapter.id}:{self.chat_id} failed: {e}")
                if self.message_id:
                    self.delivered = True
        self._reset_bubble()

    async def finish(self) -> None:
        """Final flush, then the placeholder if nothing reached the chat."""
        text = self.buffer.strip()
        if text == NO_REPLY_MARKER:
            self.delivered = True
            text = ""
        if self.suppress:
            self._reset_bubble()
            return

        if text:
            editing = self.message_id is not None
            try:
                await self._push(text)
            except Exception as e:
                logger.warning(f"[Stream] Final flush to {self.adapter.id}:{self.chat_id} failed: {e}")
                if editing or not self.delivered:
                    await self._send_quietly(text)
        self._reset_bubble()

        if not self.delivered:
            logger.info(f"[Stream] {self.chat_id}: nothing delivered ({dict(self.counts)}), sending placeholder")
            await self._send_quietly(NO_RESPONSE_TEXT)

    # ------------------------------------------------------------------

    async def _maybe_stream_edit(self) -> None:
        if not self._can_edit or self.suppress:
            return
        text = self.buffer.strip()
        # Hold back while the text could still turn out to be the marker
        if not text or NO_REPLY_MARKER.startswith(text):
            return
        if self._clock() - self._last_flush < self.edit_interval:
            return
        try:
            await self._push(text)
        except Exception as e:
            logger.warning(f"[Stream] Streaming edit failed for {self.adapter.id}:{self.chat_id}: {e}")
        self._last_flush = self._clock()

    async def _push(self, text: str) -> None:
        if self.message_id:
            await self.adapter.edit_message(self.chat_id, self.message_id, text)
        else:
            result = await self.adapter.send_message(
                OutboundMessage(chat_id=self.chat_id, text=text, thread_id=self.thread_id)
            )
            self.message_id = result.message_id
        self.delivered = True

    async def _send_quietly(self, text: str) -> None:
        try:
            await self.adapter.send_message(OutboundMessage(chat_id=self.chat_id, text=text, thread_id=self.thread_id))
            self.delivered = True
        except Exception as e:
            logger.error(f"[Stream] Send to {self.adapter.id}:{self.chat_id} failed: {e}")

    def _reset_bubble(self) -> None:
        self.buffer = ""
        self.message_id = None
        self._last_flush = self._clock()
