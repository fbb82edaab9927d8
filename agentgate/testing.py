"""In-memory channel and agent-backend doubles for tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from agentgate.bus.events import InboundMessage, OutboundFile, OutboundMessage, SendResult
from agentgate.channels.base import ChannelAdapter
from agentgate.providers.base import (
    AgentBackend,
    AgentSessionHandle,
    CreateOptions,
    SessionMode,
    SessionState,
    StreamEvent,
)


def assistant(text: str, uuid: str = "msg-1") -> StreamEvent:
    return StreamEvent(type="assistant", content=text, uuid=uuid)


def reasoning(text: str = "thinking") -> StreamEvent:
    return StreamEvent(type="reasoning", content=text)


def tool_call(call_id: str, name: str = "web_search") -> StreamEvent:
    return StreamEvent(type="tool_call", tool_call_id=call_id, tool_name=name)


def tool_result(call_id: str, content: str = "ok") -> StreamEvent:
    return StreamEvent(type="tool_result", tool_call_id=call_id, content=content)


def result(success: bool = True, error: str | None = None) -> StreamEvent:
    return StreamEvent(type="result", success=success, error=error)


class FakeAdapter(ChannelAdapter):
    id = "fake"
    name = "Fake"

    def __init__(self, editing: bool = True, files: bool = False) -> None:
        super().__init__(config=None)
        self.editing = editing
        self.files = files
        self.sent: list[OutboundMessage] = []
        self.edits: list[tuple[str, str]] = []
        self.files_sent: list[OutboundFile] = []
        self.typing = 0
        self.fail_send = False
        self.fail_edit = False
        self._next_id = 0

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send_message(self, msg: OutboundMessage) -> SendResult:
        if self.fail_send:
            raise RuntimeError("send failed")
        self.sent.append(msg)
        self._next_id += 1
        return SendResult(message_id=str(self._next_id))

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        if self.fail_edit:
            raise RuntimeError("edit failed")
        self.edits.append((message_id, text))

    async def send_typing_indicator(self, chat_id: str) -> None:
        self.typing += 1

    async def send_file(self, file: OutboundFile) -> SendResult:
        self.files_sent.append(file)
        return SendResult(message_id="file-1")

    def supports_editing(self) -> bool:
        return self.editing

    def supports_files(self) -> bool:
        return self.files

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.sent]


@dataclass
class Script:
    """What one fake session does when opened."""

    events: list[StreamEvent] = field(default_factory=lambda: [result()])
    init_error: Exception | None = None
    init_delay: float = 0.0
    hang: bool = False  # block forever after the scripted events


class FakeSession(AgentSessionHandle):
    def __init__(
        self,
        backend: FakeBackend,
        script: Script,
        mode: SessionMode,
        agent_id: str | None,
        conversation_id: str | None,
        create_options: CreateOptions | None,
    ) -> None:
        super().__init__(mode, agent_id, conversation_id)
        self.backend = backend
        self.script = script
        self.create_options = create_options
        self.sent: list[str] = []
        self.aborted = False
        self.close_count = 0
        self._counted = False

    async def _initialize(self) -> None:
        self.backend.active += 1
        self.backend.peak_active = max(self.backend.peak_active, self.backend.active)
        self._counted = True
        if self.script.init_delay:
            await asyncio.sleep(self.script.init_delay)
        if self.script.init_error is not None:
            raise self.script.init_error
        if self.mode is SessionState.CREATING_NEW:
            self.agent_id = self.agent_id or self.backend.new_agent_id
            self.conversation_id = self.backend.next_conversation_id()
        elif self.mode is SessionState.RESUMING_DEFAULT:
            self.conversation_id = self.backend.next_conversation_id()

    async def _send(self, text: str) -> None:
        self.sent.append(text)

    async def _stream(self) -> AsyncIterator[StreamEvent]:
        for event in self.script.events:
            yield event
        if self.script.hang:
            await asyncio.Event().wait()

    async def _abort(self) -> None:
        self.aborted = True

    async def _close(self) -> None:
        self.close_count += 1
        if self._counted:
            self.backend.active -= 1
            self._counted = False


class FakeBackend(AgentBackend):
    base_url = "http://letta.test"

    def __init__(self, *scripts: Script, new_agent_id: str = "agent-new") -> None:
        self.scripts = list(scripts)
        self.new_agent_id = new_agent_id
        self.sessions: list[FakeSession] = []
        self.renamed: list[tuple[str, str]] = []
        self._conversations = 0
        self.active = 0
        self.peak_active = 0

    def next_conversation_id(self) -> str:
        self._conversations += 1
        return f"conv-{self._conversations}"

    def open_session(
        self,
        mode: SessionMode,
        agent_id: str | None = None,
        conversation_id: str | None = None,
        create_options: CreateOptions | None = None,
    ) -> FakeSession:
        script = self.scripts.pop(0) if self.scripts else Script()
        session = FakeSession(self, script, mode, agent_id, conversation_id, create_options)
        self.sessions.append(session)
        return session

    async def rename_agent(self, agent_id: str, name: str) -> bool:
        self.renamed.append((agent_id, name))
        return True


def dm(text: str = "hello", chat_id: str = "100", **kwargs) -> InboundMessage:
    return InboundMessage(channel="fake", chat_id=chat_id, user_id="u1", text=text, user_name="Ada", **kwargs)


def group_msg(text: str, chat_id: str = "-200", user: str = "u1", **kwargs) -> InboundMessage:
    return InboundMessage(
        channel="fake",
        chat_id=chat_id,
        user_id=user,
        text=text,
        user_name=user.upper(),
        is_group=True,
        group_name="Team",
        **kwargs,
    )
