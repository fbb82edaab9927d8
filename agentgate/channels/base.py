"""Channel adapter contract shared by every chat platform."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from agentgate.bus.events import InboundMessage, OutboundFile, OutboundMessage, SendResult
from agentgate.pairing import AccessDecision, PairingMeta, PairingStore, format_pairing_message

MessageHandler = Callable[[InboundMessage], Awaitable[None]]
CommandHandler = Callable[[str], Awaitable[str | None]]

TYPING_INTERVAL_SECONDS = 4.0
PAIRING_FULL_TEXT = "Too many pending pairing requests. Please try again later."
NOT_ALLOWED_TEXT = "Sorry, you're not authorized to use this bot."


class ChannelAdapter(ABC):
    """
    Base class for chat channel implementations.

    The gateway core sets ``on_message`` / ``on_command`` and drives replies
    through ``send_message`` / ``edit_message``.
    """

    id: str = "base"
    name: str = "Base"

    def __init__(self, config: Any, pairing_store: PairingStore | None = None) -> None:
        self.config = config
        self.pairing_store = pairing_store
        self.on_message: MessageHandler | None = None
        self.on_command: CommandHandler | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    async def start(self) -> None:
        """Connect and start receiving messages."""

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect and release resources."""

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    @abstractmethod
    async def send_message(self, msg: OutboundMessage) -> SendResult:
        """Send a message; raise on failure."""

    @abstractmethod
    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        """Replace the text of a previously sent message; raise on failure."""

    @abstractmethod
    async def send_typing_indicator(self, chat_id: str) -> None: ...

    async def send_file(self, file: OutboundFile) -> SendResult:
        raise NotImplementedError(f"{self.id} does not support file uploads")

    def supports_editing(self) -> bool:
        return False

    def supports_files(self) -> bool:
        return False

    # ------------------------------------------------------------------
    # Inbound helpers
    # ------------------------------------------------------------------

    async def _gate_direct_message(
        self,
        user_id: str,
        chat_id: str,
        meta: PairingMeta | None = None,
    ) -> bool:
        """Apply the DM policy to a direct-message sender.

        Returns ``True`` when the message may reach the agent.  Otherwise
        the sender is answered here (pairing code, capacity notice, or a
        refusal) and ``False`` is returned.
        """
        if self.pairing_store is None:
            return True
        policy = getattr(self.config, "dm_policy", "pairing")
        static = getattr(self.config, "allow_from", None) or None
        decision = self.pairing_store.check_access(self.id, user_id, policy, static)
        if decision is AccessDecision.ALLOWED:
            return True
        if decision is AccessDecision.BLOCKED:
            logger.info(f"[{self.name}] Blocked DM from {user_id} (allowlist)")
            await self._reply_quietly(chat_id, NOT_ALLOWED_TEXT)
            return False

        code, created = await self.pairing_store.upsert_pairing_request(self.id, user_id, meta)
        if not code:
            await self._reply_quietly(chat_id, PAIRING_FULL_TEXT)
        elif created:
            logger.info(f"[{self.name}] New pairing request from {user_id}: {code}")
            await self._reply_quietly(chat_id, format_pairing_message(self.id, code))
        return False

    async def _reply_quietly(self, chat_id: str, text: str) -> None:
        try:
            await self.send_message(OutboundMessage(chat_id=chat_id, text=text))
        except Exception as e:
            logger.warning(f"[{self.name}] Failed to reply to {chat_id}: {e}")

    async def _handle_message(self, msg: InboundMessage) -> None:
        """Forward an inbound message to the core."""
        if self.on_message is None:
            logger.warning(f"[{self.name}] Dropping message, no handler attached")
            return
        await self.on_message(msg)


class TypingHeartbeat:
    """Keeps a "typing…" indicator alive until stopped.

    Most platforms expire the indicator after ~5 s, so it is re-sent every
    ``interval`` seconds.
    """

    def __init__(self, interval: float = TYPING_INTERVAL_SECONDS) -> None:
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    def start(self, adapter: ChannelAdapter, chat_id: str) -> None:
        self.stop()
        self._task = asyncio.create_task(self._loop(adapter, chat_id))

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _loop(self, adapter: ChannelAdapter, chat_id: str) -> None:
        while True:
            try:
                await adapter.send_typing_indicator(chat_id)
            except Exception as e:
                logger.debug(f"Typing indicator failed for {adapter.id}:{chat_id}: {e}")
            await asyncio.sleep(self.interval)
