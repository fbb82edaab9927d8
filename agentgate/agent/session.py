"""One agent turn: open a session, send, stream the reply, persist, close.

Mode selection follows what has been persisted:

- conversation id known  -> resume that conversation
- only agent id known    -> new conversation on that agent
- nothing known          -> create the agent (with memory + system prompt)

A failed resume falls back once to ``CREATING_NEW`` on the same agent id.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from agentgate.agent.hooks import PostCreateHook
from agentgate.agent.store import AgentStore
from agentgate.agent.stream import DEFAULT_EDIT_INTERVAL_MS, StreamAggregator
from agentgate.agent.watchdog import DEFAULT_IDLE_TIMEOUT_MS, StreamWatchdog
from agentgate.channels.base import TYPING_INTERVAL_SECONDS, TypingHeartbeat
from agentgate.errors import AgentRunError, SessionInitError, SessionSendError, StreamIdleTimeout
from agentgate.providers.base import (
    AgentBackend,
    AgentSessionHandle,
    CreateOptions,
    SessionMode,
    SessionState,
    StreamEvent,
)

if TYPE_CHECKING:
    from agentgate.channels.base import ChannelAdapter

DEFAULT_INIT_TIMEOUT_MS = 30_000
DEFAULT_MAX_TOOL_CALLS = 100
TOOL_LOOP_TEXT = "(Agent got stuck in a tool loop and was stopped. Try sending your message again.)"


def run_failed_text(error: str | None) -> str:
    return f"(Agent run failed: {error or 'unknown error'}. Try sending your message again.)"


class ReplySink(Protocol):
    delivered: bool

    @property
    def has_pending_text(self) -> bool: ...

    async def feed(self, event: StreamEvent) -> None: ...

    def replace_text(self, text: str) -> None: ...

    async def finish(self) -> None: ...


class TextCollector:
    """Sink for background turns: keeps the assistant text, sends nothing."""

    def __init__(self) -> None:
        self.parts: list[str] = []
        self.delivered = False

    @property
    def text(self) -> str:
        return "".join(self.parts).strip()

    @property
    def has_pending_text(self) -> bool:
        return bool(self.text)

    async def feed(self, event: StreamEvent) -> None:
        if event.type == "assistant":
            self.parts.append(event.content)

    def replace_text(self, text: str) -> None:
        self.parts = [text]

    async def finish(self) -> None:
        self.delivered = self.has_pending_text


@dataclass
class TurnOutcome:
    agent_id: str | None = None
    conversation_id: str | None = None
    created_agent_id: str | None = None
    result: StreamEvent | None = None
    timed_out: bool = False
    tool_loop: bool = False
    delivered: bool = False
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def error(self) -> str | None:
        if self.tool_loop:
            return "tool loop"
        if self.result is not None and (self.result.success is False or self.result.error):
            return self.result.error or "error"
        return None


class SessionOrchestrator:
    def __init__(
        self,
        backend: AgentBackend,
        store: AgentStore,
        *,
        create_options: CreateOptions | None = None,
        post_create_hooks: list[PostCreateHook] | None = None,
        init_timeout_ms: int = DEFAULT_INIT_TIMEOUT_MS,
        idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS,
        edit_interval_ms: int = DEFAULT_EDIT_INTERVAL_MS,
        max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS,
        typing_interval: float = TYPING_INTERVAL_SECONDS,
    ) -> None:
        self.backend = backend
        self.store = store
        self.create_options = create_options or CreateOptions()
        self.post_create_hooks = list(post_create_hooks or [])
        self.init_timeout_ms = init_timeout_ms
        self.idle_timeout_ms = idle_timeout_ms
        self.edit_interval_ms = edit_interval_ms
        self.max_tool_calls = max_tool_calls
        self.typing_interval = typing_interval
        self._hook_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def select_mode(self) -> SessionMode:
        if self.store.conversation_id:
            return SessionState.RESUMING_CONVERSATION
        if self.store.agent_id:
            return SessionState.RESUMING_DEFAULT
        return SessionState.CREATING_NEW

    async def open_session(self) -> AgentSessionHandle:
        """Return an initialized (ACTIVE) handle or raise ``SessionInitError``."""
        mode = self.select_mode()
        agent_id = self.store.agent_id
        handle = self._new_handle(mode, agent_id, self.store.conversation_id)
        try:
            await self._initialize(handle)
        except SessionInitError as exc:
            await handle.close()
            if mode is SessionState.CREATING_NEW:
                raise
            logger.warning(f"[Session] Resume failed ({exc}), creating a new conversation")
            handle = self._new_handle(SessionState.CREATING_NEW, agent_id, None)
            try:
                await self._initialize(handle)
            except SessionInitError:
                await handle.close()
                raise

        if handle.conversation_id and handle.conversation_id != self.store.conversation_id:
            await self.store.set_conversation(handle.conversation_id)
            logger.info(f"[Session] Saved conversation id {handle.conversation_id}")
        return handle

    def _new_handle(
        self,
        mode: SessionMode,
        agent_id: str | None,
        conversation_id: str | None,
    ) -> AgentSessionHandle:
        options = self.create_options if mode is SessionState.CREATING_NEW else None
        return self.backend.open_session(mode, agent_id, conversation_id, options)

    async def _initialize(self, handle: AgentSessionHandle) -> None:
        mode = handle.mode.value
        try:
            await asyncio.wait_for(handle.initialize(), self.init_timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise SessionInitError(f"session init timed out after {self.init_timeout_ms} ms", mode) from exc
        except SessionInitError:
            raise
        except Exception as exc:
            raise SessionInitError(f"session init failed: {exc}", mode) from exc

    async def _send(self, handle: AgentSessionHandle, text: str) -> None:
        try:
            await asyncio.wait_for(handle.send(text), self.init_timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise SessionSendError(f"send timed out after {self.init_timeout_ms} ms") from exc
        except Exception as exc:
            raise SessionSendError(f"send failed: {exc}") from exc

    async def _persist_after_result(self, handle: AgentSessionHandle) -> str | None:
        """Save ids from a finished run; returns the agent id on first-ever creation."""
        agent_id = handle.agent_id
        if agent_id and agent_id != self.store.agent_id:
            first_creation = self.store.agent_id is None
            await self.store.set_agent(agent_id, self.backend.base_url)
            if handle.conversation_id and handle.conversation_id != self.store.conversation_id:
                await self.store.set_conversation(handle.conversation_id)
            logger.info(f"[Session] Saved agent id {agent_id}")
            return agent_id if first_creation else None
        if handle.conversation_id and handle.conversation_id != self.store.conversation_id:
            await self.store.set_conversation(handle.conversation_id)
            logger.info(f"[Session] Conversation id updated: {handle.conversation_id}")
        return None

    def _schedule_hooks(self, agent_id: str) -> None:
        for hook in self.post_create_hooks:
            task = asyncio.create_task(self._run_hook(hook, agent_id))
            self._hook_tasks.add(task)
            task.add_done_callback(self._hook_tasks.discard)

    @staticmethod
    async def _run_hook(hook: PostCreateHook, agent_id: str) -> None:
        try:
            await hook(agent_id)
        except Exception as exc:
            logger.warning(f"[Session] Post-creation hook failed for {agent_id}: {exc}")

    async def wait_for_hooks(self) -> None:
        if self._hook_tasks:
            await asyncio.gather(*self._hook_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        text: str,
        adapter: ChannelAdapter,
        chat_id: str,
        thread_id: str | None = None,
        *,
        suppress: bool = False,
    ) -> TurnOutcome:
        """Run one chat turn and deliver the reply through *adapter*.

        With ``suppress`` the agent still sees the turn but nothing is sent.
        Raises ``SessionInitError`` / ``SessionSendError`` on setup failure.
        """
        aggregator = StreamAggregator(
            adapter,
            chat_id,
            thread_id,
            edit_interval_ms=self.edit_interval_ms,
            suppress=suppress,
        )
        typing = TypingHeartbeat(self.typing_interval)
        if not suppress:
            typing.start(adapter, chat_id)
        try:
            return await self._execute(text, aggregator)
        finally:
            typing.stop()

    async def collect(self, text: str) -> str:
        """Run one turn with no chat attached and return the reply text.

        A timed-out turn returns whatever text arrived; with none it raises
        ``StreamIdleTimeout``.
        """
        collector = TextCollector()
        outcome = await self._execute(text, collector)
        if outcome.timed_out and not collector.text:
            raise StreamIdleTimeout(f"no agent output for {self.idle_timeout_ms} ms")
        if outcome.error and not outcome.timed_out:
            raise AgentRunError(f"Agent run failed: {outcome.error}")
        return collector.text

    async def _execute(self, text: str, sink: ReplySink) -> TurnOutcome:
        handle = await self.open_session()
        outcome = TurnOutcome()
        try:
            await self._send(handle, text)
            await self._drain(handle, sink, outcome)

            if outcome.tool_loop:
                sink.replace_text(TOOL_LOOP_TEXT)
            elif outcome.error and not sink.delivered and not sink.has_pending_text:
                sink.replace_text(run_failed_text(outcome.error))
            await sink.finish()
            outcome.delivered = sink.delivered
        finally:
            outcome.agent_id = handle.agent_id
            outcome.conversation_id = handle.conversation_id
            await handle.close()
            # Hooks run once the reply path is done, even if delivery failed
            if outcome.created_agent_id:
                self._schedule_hooks(outcome.created_agent_id)
        return outcome

    async def _drain(self, handle: AgentSessionHandle, sink: ReplySink, outcome: TurnOutcome) -> None:
        consumer: asyncio.Task[None] | None = None

        async def on_idle() -> None:
            await handle.abort()
            if consumer is not None:
                consumer.cancel()

        watchdog = StreamWatchdog(on_idle, self.idle_timeout_ms)
        watchdog.start()
        consumer = asyncio.create_task(self._consume(handle, sink, outcome, watchdog))
        try:
            await consumer
        except asyncio.CancelledError:
            if not watchdog.fired:
                raise
            logger.warning(f"[Session] Stream idle for {self.idle_timeout_ms} ms, keeping partial reply")
        finally:
            watchdog.stop()
            await watchdog.wait_aborted()
        # An aborted run may also end the stream on its own
        outcome.timed_out = watchdog.fired

    async def _consume(
        self,
        handle: AgentSessionHandle,
        sink: ReplySink,
        outcome: TurnOutcome,
        watchdog: StreamWatchdog,
    ) -> None:
        seen_tool_calls: set[str] = set()
        tool_calls = 0

        async for event in handle.stream():
            watchdog.ping()
            if event.type == "tool_call":
                # Tool calls arrive token by token under one id
                if event.tool_call_id:
                    if event.tool_call_id in seen_tool_calls:
                        continue
                    seen_tool_calls.add(event.tool_call_id)
                tool_calls += 1
                if tool_calls > self.max_tool_calls:
                    logger.error(f"[Session] Agent stuck in a tool loop ({tool_calls} calls), aborting")
                    outcome.tool_loop = True
                    await handle.abort()
                    return
                logger.info(f"[Session] Calling tool: {event.tool_name or 'unknown'}")

            outcome.counts[event.type] = outcome.counts.get(event.type, 0) + 1
            await sink.feed(event)

            if event.is_terminal:
                outcome.result = event
                logger.info(
                    f"[Session] Result: success={event.success} error={event.error} counts={outcome.counts}"
                )
                outcome.created_agent_id = await self._persist_after_result(handle)
                return
