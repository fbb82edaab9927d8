"""Agent loop: routes every chat surface into one serialized agent."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from loguru import logger

from agentgate import __version__
from agentgate.agent.batcher import GroupBatcher
from agentgate.agent.formatter import (
    LISTENING_HEADER,
    EnvelopeOptions,
    SessionContext,
    format_group_batch_envelope,
    format_message_envelope,
)
from agentgate.agent.session import SessionOrchestrator
from agentgate.agent.store import AgentStore
from agentgate.bus.events import BatchMessage, Inbound, InboundMessage, OutboundFile, OutboundMessage
from agentgate.bus.queue import MessageQueue, QueueEntry
from agentgate.channels.base import ChannelAdapter

HELP_TEXT = (
    "Commands:\n"
    "/status - Show agent and queue status\n"
    "/reset - Start a new conversation (memory is kept)\n"
    "/help - Show this help"
)


class AgentLoop:
    """
    The gateway core.

    1. Channels hand inbound messages to :meth:`handle_message`
    2. Group traffic is debounced by the :class:`GroupBatcher`
    3. Every turn is serialized through one :class:`MessageQueue`
    4. Each turn is run by the :class:`SessionOrchestrator`
    """

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        store: AgentStore,
        *,
        agent_name: str = "agentgate",
        envelope_options: EnvelopeOptions | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.agent_name = agent_name
        self.envelope_options = envelope_options or EnvelopeOptions()
        self.queue = MessageQueue(self._process_entry)
        self.channels: dict[str, ChannelAdapter] = {}
        self.group_batcher: GroupBatcher | None = None
        self._seen_chats: set[str] = set()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def register_channel(self, adapter: ChannelAdapter) -> None:
        async def on_message(msg: InboundMessage) -> None:
            await self.handle_message(msg, adapter)

        adapter.on_message = on_message
        adapter.on_command = self.handle_command
        self.channels[adapter.id] = adapter
        logger.info(f"Registered channel: {adapter.name}")

    def set_group_batcher(self, batcher: GroupBatcher) -> None:
        self.group_batcher = batcher

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_message(self, msg: InboundMessage, adapter: ChannelAdapter) -> None:
        logger.info(f"Message from {msg.channel}:{msg.chat_id} ({msg.user_id}): {msg.text[:60]!r}")
        if msg.is_group and self.group_batcher is not None:
            self.group_batcher.on_message(msg, adapter)
            return
        self.queue.enqueue(QueueEntry(message=msg, adapter=adapter))

    def process_group_batch(self, item: Inbound, adapter: ChannelAdapter) -> None:
        """Flush callback for the group batcher."""
        self.queue.enqueue(QueueEntry(message=item, adapter=adapter))

    async def handle_command(self, command: str) -> str | None:
        name = command.strip().lstrip("/").split("@", 1)[0].lower()
        if name == "status":
            return self.format_status()
        if name == "reset":
            await self.store.reset_conversation()
            self._seen_chats.clear()
            logger.info("Conversation reset by command")
            return "Conversation reset. The next message starts a new conversation; memory is kept."
        if name in ("help", "start"):
            return HELP_TEXT
        return None

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------

    def format_turn(self, msg: Inbound) -> str:
        if isinstance(msg, BatchMessage):
            return format_group_batch_envelope(msg.messages, self.envelope_options, listening=msg.is_listening_mode)

        session_context = None
        if msg.group_key not in self._seen_chats:
            self._seen_chats.add(msg.group_key)
            session_context = SessionContext(
                agent_id=self.store.agent_id,
                agent_name=self.agent_name,
                server_url=self.orchestrator.backend.base_url,
            )
        text = format_message_envelope(msg, self.envelope_options, session_context)
        return f"{LISTENING_HEADER}\n{text}" if msg.is_listening_mode else text

    async def _process_entry(self, entry: QueueEntry) -> None:
        if entry.is_background:
            reply = await self.orchestrator.collect(entry.text or "")
            if entry.result is not None and not entry.result.done():
                entry.result.set_result(reply)
            return

        msg, adapter = entry.message, entry.adapter
        if msg is None or adapter is None:
            raise ValueError("Queue entry carries neither background text nor a chat message")
        listening = msg.is_listening_mode

        try:
            text = self.format_turn(msg)
            if not listening:
                await self.store.set_last_message_target(msg.channel, msg.chat_id, msg.message_id)
            outcome = await self.orchestrator.run_turn(
                text, adapter, msg.chat_id, msg.thread_id, suppress=listening
            )
        except Exception as e:
            logger.exception(f"Error processing message from {msg.channel}:{msg.chat_id}: {e}")
            if not listening:
                await self._reply_error(adapter, msg, e)
            return

        if listening:
            logger.info(f"Listening mode: {msg.channel}:{msg.chat_id} processed for memory, reply suppressed")
        elif outcome.timed_out:
            logger.warning(f"Turn for {msg.channel}:{msg.chat_id} ended on idle timeout")

    async def _reply_error(self, adapter: ChannelAdapter, msg: Inbound, error: Exception) -> None:
        try:
            await adapter.send_message(
                OutboundMessage(chat_id=msg.chat_id, text=f"Error: {error}", thread_id=msg.thread_id)
            )
        except Exception as send_error:
            logger.error(f"Failed to send error message to {msg.channel}:{msg.chat_id}: {send_error}")

    # ------------------------------------------------------------------
    # Background triggers and outbound delivery
    # ------------------------------------------------------------------

    async def send_to_agent(self, text: str) -> str:
        """Run a turn with no chat attached, queued behind chat turns.

        Returns the agent's reply text; raises ``AgentRunError`` when the
        run ends with an error result.
        """
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self.queue.enqueue(QueueEntry(text=text, result=future))
        return await future

    async def deliver_to_channel(
        self,
        channel: str,
        chat_id: str,
        text: str | None = None,
        file_path: str | Path | None = None,
        kind: str = "file",
    ) -> str:
        """Send text or a file to a chat directly, outside any turn."""
        adapter = self.channels.get(channel)
        if adapter is None:
            raise ValueError(f"Channel not found: {channel}")
        if file_path is not None:
            if not adapter.supports_files():
                raise ValueError(f"Channel {channel} does not support file sending")
            result = await adapter.send_file(
                OutboundFile(
                    chat_id=chat_id,
                    file_path=str(file_path),
                    caption=text,
                    kind="image" if kind == "image" else "file",
                )
            )
            return result.message_id
        if not text:
            raise ValueError("Either text or file_path must be provided")
        result = await adapter.send_message(OutboundMessage(chat_id=chat_id, text=text))
        return result.message_id

    # ------------------------------------------------------------------
    # Lifecycle / status
    # ------------------------------------------------------------------

    def start(self) -> None:
        base_url = self.orchestrator.backend.base_url
        if self.store.is_server_mismatch(base_url):
            logger.warning(
                f"Stored agent {self.store.agent_id} was created on {self.store.base_url}, "
                f"not {base_url}; run `agentgate reset` to start fresh"
            )
        logger.info(f"Agent loop started (agent={self.store.agent_id or 'new'})")

    async def stop(self) -> None:
        if self.group_batcher is not None:
            self.group_batcher.stop()
        await self.queue.stop()
        await self.orchestrator.wait_for_hooks()
        logger.info("Agent loop stopped")

    def get_status(self) -> dict[str, Any]:
        return {
            "version": __version__,
            "agent_id": self.store.agent_id,
            "conversation_id": self.store.conversation_id,
            "base_url": self.orchestrator.backend.base_url,
            "server_mismatch": self.store.is_server_mismatch(self.orchestrator.backend.base_url),
            "channels": {cid: a.is_running for cid, a in self.channels.items()},
            "queue_pending": self.queue.pending,
            "busy": self.queue.busy,
        }

    def format_status(self) -> str:
        status = self.get_status()
        channels = ", ".join(f"{cid} ({'up' if up else 'down'})" for cid, up in status["channels"].items())
        lines = [
            f"Agent: {status['agent_id'] or '(not created yet)'}",
            f"Conversation: {status['conversation_id'] or '(new)'}",
            f"Server: {status['base_url']}",
            f"Channels: {channels or 'none'}",
            f"Queue: {status['queue_pending']} pending{', busy' if status['busy'] else ''}",
        ]
        return "\n".join(lines)
