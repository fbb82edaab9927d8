"""Single-flight FIFO queue in front of the agent.

Every inbound turn from every channel goes through one ``MessageQueue``.
The drain loop awaits each entry's processing to completion before it
takes the next, so the agent backend never sees two turns at once.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from agentgate.bus.events import Inbound
from agentgate.errors import QueueStoppedError

if TYPE_CHECKING:
    from agentgate.channels.base import ChannelAdapter


@dataclass
class QueueEntry:
    """One pending turn.

    Channel turns carry the originating adapter for reply delivery.
    Background triggers carry ``text`` and a ``result`` future instead.
    """

    message: Inbound | None = None
    adapter: ChannelAdapter | None = None
    text: str | None = None
    result: asyncio.Future[Any] | None = field(default=None, repr=False)

    @property
    def is_background(self) -> bool:
        return self.adapter is None

    def describe(self) -> str:
        if self.message is not None:
            return f"{self.message.channel}:{self.message.chat_id}"
        return "background"


EntryProcessor = Callable[[QueueEntry], Awaitable[None]]


class MessageQueue:
    def __init__(self, processor: EntryProcessor) -> None:
        self._processor = processor
        self._entries: deque[QueueEntry] = deque()
        self._processing = False
        self._drain_task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def pending(self) -> int:
        return len(self._entries)

    @property
    def busy(self) -> bool:
        return self._processing

    def enqueue(self, entry: QueueEntry) -> None:
        """Append *entry* and start draining if no turn is in flight."""
        self._entries.append(entry)
        logger.debug(f"[Queue] Enqueued {entry.describe()} (pending={len(self._entries)})")
        if not self._processing:
            self._processing = True
            self._idle.clear()
            self._drain_task = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        try:
            while self._entries:
                entry = self._entries.popleft()
                try:
                    await self._processor(entry)
                except Exception as exc:
                    logger.exception(f"[Queue] Error processing {entry.describe()}: {exc}")
                    if entry.result is not None and not entry.result.done():
                        entry.result.set_exception(exc)
            logger.debug("[Queue] Finished processing all messages")
        finally:
            self._processing = False
            self._idle.set()

    async def join(self) -> None:
        """Wait until the queue is empty and no turn is in flight."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Drop unprocessed entries and wait for the in-flight turn."""
        dropped = 0
        while self._entries:
            entry = self._entries.popleft()
            dropped += 1
            if entry.result is not None and not entry.result.done():
                entry.result.set_exception(QueueStoppedError("queue stopped"))
        if dropped:
            logger.warning(f"[Queue] Stopped with {dropped} unprocessed entr{'y' if dropped == 1 else 'ies'}")
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)
