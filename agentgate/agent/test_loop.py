import asyncio

import pytest

from agentgate.agent.batcher import GroupBatcher, GroupBatchSettings
from agentgate.agent.formatter import LISTENING_HEADER, EnvelopeOptions
from agentgate.agent.loop import HELP_TEXT, AgentLoop
from agentgate.agent.session import SessionOrchestrator
from agentgate.agent.store import AgentStore
from agentgate.bus.queue import QueueEntry
from agentgate.errors import AgentRunError
from agentgate.testing import FakeAdapter, FakeBackend, Script, assistant, dm, group_msg, result


def _loop(backend: FakeBackend, store: AgentStore, adapter: FakeAdapter, **batch) -> AgentLoop:
    orch = SessionOrchestrator(backend, store)
    loop = AgentLoop(orch, store, agent_name="Gate", envelope_options=EnvelopeOptions(timezone="utc"))
    loop.register_channel(adapter)
    if batch:
        loop.set_group_batcher(GroupBatcher(loop.process_group_batch, GroupBatchSettings(**batch)))
    return loop


async def test_direct_message_round_trip(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("Hello Ada"), result()]))
    adapter = FakeAdapter(editing=False)
    loop = _loop(backend, store, adapter)

    await adapter.on_message(dm("hi there", message_id="7"))
    await loop.queue.join()

    sent = backend.sessions[0].sent[0]
    assert "<system-reminder>" in sent
    assert "## Session Context" in sent
    assert sent.endswith("hi there")
    assert adapter.texts == ["Hello Ada"]
    target = store.last_message_target
    assert target is not None and (target.channel, target.chat_id, target.message_id) == ("fake", "100", "7")


async def test_session_context_only_on_first_message_per_chat(store: AgentStore) -> None:
    backend = FakeBackend()
    adapter = FakeAdapter()
    loop = _loop(backend, store, adapter)

    await loop.handle_message(dm("one"), adapter)
    await loop.handle_message(dm("two"), adapter)
    await loop.queue.join()

    first, second = (s.sent[0] for s in backend.sessions)
    assert "## Session Context" in first
    assert "## Session Context" not in second


async def test_turns_never_overlap(store: AgentStore) -> None:
    backend = FakeBackend(*(Script(events=[assistant(f"r{i}"), result()], init_delay=0.01) for i in range(3)))
    adapter = FakeAdapter(editing=False)
    loop = _loop(backend, store, adapter)

    for i in range(3):
        await loop.handle_message(dm(f"m{i}", chat_id=str(i)), adapter)
    await loop.queue.join()

    assert backend.peak_active == 1
    assert adapter.texts == ["r0", "r1", "r2"]
    assert [s.sent[0].endswith(f"m{i}") for i, s in enumerate(backend.sessions)] == [True] * 3


async def test_group_burst_becomes_one_turn(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("hi team"), result()]))
    adapter = FakeAdapter(editing=False)
    loop = _loop(backend, store, adapter, default_interval_ms=20)

    await adapter.on_message(group_msg("hey", user="alice"))
    await adapter.on_message(group_msg("anyone?", user="bob"))
    await asyncio.sleep(0.08)
    await loop.queue.join()

    assert len(backend.sessions) == 1
    sent = backend.sessions[0].sent[0]
    assert sent.startswith("[GROUP CHAT - fake:-200 - Team - 2 messages]")
    assert "ALICE: hey" in sent and "BOB: anyone?" in sent
    assert adapter.texts == ["hi team"]


async def test_listening_group_is_processed_silently(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("noted"), result()]))
    adapter = FakeAdapter()
    loop = _loop(backend, store, adapter, intervals_ms={"fake": 0}, listening_keys={"fake:-200"})

    await adapter.on_message(group_msg("just chatting"))
    await loop.queue.join()

    assert LISTENING_HEADER in backend.sessions[0].sent[0]
    assert adapter.sent == []
    assert adapter.typing == 0
    assert store.last_message_target is None


async def test_failed_turn_replies_with_error(store: AgentStore) -> None:
    backend = FakeBackend(Script(init_error=RuntimeError("unauthorized")))
    adapter = FakeAdapter()
    loop = _loop(backend, store, adapter)

    await loop.handle_message(dm(), adapter)
    await loop.queue.join()

    assert len(adapter.texts) == 1
    assert adapter.texts[0].startswith("Error: ")
    assert "unauthorized" in adapter.texts[0]


async def test_failure_before_the_turn_starts_still_replies_with_error(
    store: AgentStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def broken_write(*args, **kwargs) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(store, "set_last_message_target", broken_write)
    backend = FakeBackend()
    adapter = FakeAdapter()
    loop = _loop(backend, store, adapter)

    await loop.handle_message(dm(), adapter)
    await loop.queue.join()

    assert adapter.texts == ["Error: disk full"]
    assert backend.sessions == []


async def test_queue_keeps_going_after_a_failure(store: AgentStore) -> None:
    backend = FakeBackend(Script(init_error=RuntimeError("boom")), Script(events=[assistant("ok"), result()]))
    adapter = FakeAdapter(editing=False)
    loop = _loop(backend, store, adapter)

    await loop.handle_message(dm("a"), adapter)
    await loop.handle_message(dm("b"), adapter)
    await loop.queue.join()

    assert adapter.texts[-1] == "ok"


async def test_commands(store: AgentStore) -> None:
    await store.set_agent("agent-1", FakeBackend.base_url)
    await store.set_conversation("conv-1")
    adapter = FakeAdapter()
    loop = _loop(FakeBackend(), store, adapter)

    status = await adapter.on_command("status")
    assert "agent-1" in status and "conv-1" in status

    assert await loop.handle_command("/help") == HELP_TEXT
    assert await loop.handle_command("/start@gate_bot") == HELP_TEXT
    assert await loop.handle_command("unknown") is None

    reply = await loop.handle_command("reset")
    assert "reset" in reply.lower()
    assert store.conversation_id is None
    assert store.agent_id == "agent-1"


async def test_send_to_agent_returns_reply_text(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("daily summary"), result()]))
    adapter = FakeAdapter()
    loop = _loop(backend, store, adapter)

    reply = await loop.send_to_agent("[heartbeat] check in")

    assert reply == "daily summary"
    assert backend.sessions[0].sent == ["[heartbeat] check in"]
    assert adapter.sent == []


async def test_send_to_agent_surfaces_run_errors(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[result(success=False, error="quota")]))
    loop = _loop(backend, store, FakeAdapter())

    with pytest.raises(AgentRunError):
        await loop.send_to_agent("ping")


async def test_deliver_to_channel(store: AgentStore) -> None:
    adapter = FakeAdapter(files=True)
    loop = _loop(FakeBackend(), store, adapter)

    assert await loop.deliver_to_channel("fake", "100", text="hello") == "1"
    assert await loop.deliver_to_channel("fake", "100", text="chart", file_path="/tmp/c.png", kind="image") == "file-1"
    assert adapter.files_sent[0].kind == "image"
    assert adapter.files_sent[0].caption == "chart"

    with pytest.raises(ValueError, match="Channel not found"):
        await loop.deliver_to_channel("nope", "1", text="x")
    with pytest.raises(ValueError):
        await loop.deliver_to_channel("fake", "100")


async def test_deliver_file_requires_file_support(store: AgentStore) -> None:
    adapter = FakeAdapter(files=False)
    loop = _loop(FakeBackend(), store, adapter)

    with pytest.raises(ValueError, match="file"):
        await loop.deliver_to_channel("fake", "100", file_path="/tmp/x.txt")


async def test_stop_finishes_in_flight_turn_and_drops_buffered_messages(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("slow"), result()], init_delay=0.05))
    adapter = FakeAdapter(editing=False)
    loop = _loop(backend, store, adapter, default_interval_ms=5000)

    await loop.handle_message(dm("first"), adapter)
    await adapter.on_message(group_msg("buffered"))
    await asyncio.sleep(0)
    await loop.stop()

    assert adapter.texts == ["slow"]
    assert len(backend.sessions) == 1


async def test_entry_without_a_message_is_rejected(store: AgentStore) -> None:
    adapter = FakeAdapter()
    loop = _loop(FakeBackend(), store, adapter)

    with pytest.raises(ValueError, match="neither"):
        await loop._process_entry(QueueEntry(adapter=adapter))
