import asyncio

import pytest

from agentgate.agent.session import TOOL_LOOP_TEXT, SessionOrchestrator, run_failed_text
from agentgate.agent.store import AgentStore
from agentgate.errors import AgentRunError, SessionInitError, StreamIdleTimeout
from agentgate.providers.base import CreateOptions, SessionState
from agentgate.testing import FakeAdapter, FakeBackend, Script, assistant, result, tool_call


def _orchestrator(backend: FakeBackend, store: AgentStore, **kwargs) -> SessionOrchestrator:
    kwargs.setdefault("create_options", CreateOptions(system_prompt="be helpful", name="gate"))
    return SessionOrchestrator(backend, store, **kwargs)


async def _seed(store: AgentStore, agent_id: str = "agent-1", conversation_id: str | None = "conv-9") -> None:
    await store.set_agent(agent_id, FakeBackend.base_url)
    if conversation_id:
        await store.set_conversation(conversation_id)


async def test_first_turn_creates_agent_and_persists_ids(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("Hi there"), result()]))
    hooked: list[str] = []

    async def hook(agent_id: str) -> None:
        hooked.append(agent_id)

    orch = _orchestrator(backend, store, post_create_hooks=[hook])
    adapter = FakeAdapter(editing=False)

    outcome = await orch.run_turn("hello", adapter, "100")
    await orch.wait_for_hooks()

    session = backend.sessions[0]
    assert session.mode is SessionState.CREATING_NEW
    assert session.create_options is not None
    assert session.sent == ["hello"]
    assert session.closed
    assert adapter.texts == ["Hi there"]
    assert outcome.delivered and outcome.error is None
    assert store.agent_id == "agent-new"
    assert store.conversation_id == "conv-1"
    assert store.base_url == FakeBackend.base_url
    assert hooked == ["agent-new"]


async def test_known_conversation_is_resumed(store: AgentStore) -> None:
    await _seed(store)
    backend = FakeBackend(Script(events=[assistant("again"), result()]))

    await _orchestrator(backend, store).run_turn("hi", FakeAdapter(), "100")

    session = backend.sessions[0]
    assert session.mode is SessionState.RESUMING_CONVERSATION
    assert session.create_options is None
    assert session.conversation_id == "conv-9"
    assert store.conversation_id == "conv-9"


async def test_known_agent_without_conversation_opens_a_new_one(store: AgentStore) -> None:
    await _seed(store, conversation_id=None)
    backend = FakeBackend()

    await _orchestrator(backend, store).run_turn("hi", FakeAdapter(), "100")

    assert backend.sessions[0].mode is SessionState.RESUMING_DEFAULT
    assert store.conversation_id == "conv-1"


async def test_failed_resume_falls_back_to_new_conversation_once(store: AgentStore) -> None:
    await _seed(store)
    backend = FakeBackend(
        Script(init_error=RuntimeError("conversation not found")),
        Script(events=[assistant("fresh start"), result()]),
    )
    hooked: list[str] = []

    async def hook(agent_id: str) -> None:
        hooked.append(agent_id)

    orch = _orchestrator(backend, store, post_create_hooks=[hook])
    adapter = FakeAdapter(editing=False)
    await orch.run_turn("hi", adapter, "100")
    await orch.wait_for_hooks()

    failed, retry = backend.sessions
    assert failed.closed
    assert retry.mode is SessionState.CREATING_NEW
    assert retry.agent_id == "agent-1"
    assert store.agent_id == "agent-1"
    assert store.conversation_id == "conv-1"
    assert adapter.texts == ["fresh start"]
    assert hooked == []


async def test_failed_creation_raises_init_error(store: AgentStore) -> None:
    backend = FakeBackend(Script(init_error=RuntimeError("bad api key")))

    with pytest.raises(SessionInitError):
        await _orchestrator(backend, store).run_turn("hi", FakeAdapter(), "100")

    assert backend.sessions[0].closed
    assert len(backend.sessions) == 1


async def test_slow_initialize_times_out(store: AgentStore) -> None:
    backend = FakeBackend(Script(init_delay=1.0))

    with pytest.raises(SessionInitError, match="timed out"):
        await _orchestrator(backend, store, init_timeout_ms=20).run_turn("hi", FakeAdapter(), "100")


async def test_idle_stream_is_aborted_and_partial_reply_kept(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("partial answer")], hang=True))
    adapter = FakeAdapter(editing=False)

    outcome = await _orchestrator(backend, store, idle_timeout_ms=30).run_turn("hi", adapter, "100")

    assert outcome.timed_out
    assert backend.sessions[0].aborted
    assert backend.sessions[0].closed
    assert adapter.texts == ["partial answer"]


async def test_tool_loop_is_stopped(store: AgentStore) -> None:
    events = [tool_call("c1"), tool_call("c2"), tool_call("c3"), result()]
    backend = FakeBackend(Script(events=events))
    adapter = FakeAdapter(editing=False)

    outcome = await _orchestrator(backend, store, max_tool_calls=2).run_turn("hi", adapter, "100")

    assert outcome.tool_loop
    assert backend.sessions[0].aborted
    assert adapter.texts == [TOOL_LOOP_TEXT]


async def test_repeated_tool_call_fragments_count_once(store: AgentStore) -> None:
    events = [tool_call("c1")] * 5 + [assistant("done"), result()]
    backend = FakeBackend(Script(events=events))
    adapter = FakeAdapter(editing=False)

    outcome = await _orchestrator(backend, store, max_tool_calls=2).run_turn("hi", adapter, "100")

    assert not outcome.tool_loop
    assert outcome.counts["tool_call"] == 1
    assert adapter.texts == ["done"]


async def test_error_result_without_text_reports_failure(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[result(success=False, error="rate limited")]))
    adapter = FakeAdapter(editing=False)

    outcome = await _orchestrator(backend, store).run_turn("hi", adapter, "100")

    assert outcome.error == "rate limited"
    assert adapter.texts == [run_failed_text("rate limited")]


async def test_suppressed_turn_sends_nothing_and_skips_typing(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("noted"), result()], init_delay=0.02))
    adapter = FakeAdapter()

    await _orchestrator(backend, store, typing_interval=0.01).run_turn("hi", adapter, "100", suppress=True)

    assert adapter.sent == []
    assert adapter.typing == 0
    assert backend.sessions[0].sent == ["hi"]


async def test_typing_indicator_runs_during_turn(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("ok"), result()], init_delay=0.03))
    adapter = FakeAdapter()

    await _orchestrator(backend, store, typing_interval=0.01).run_turn("hi", adapter, "100")

    assert adapter.typing >= 1


async def test_collect_returns_reply_text(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[assistant("4"), result()]))

    reply = await _orchestrator(backend, store).collect("2+2?")

    assert reply == "4"


async def test_collect_raises_on_error_result(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[result(success=False, error="boom")]))

    with pytest.raises(AgentRunError, match="boom"):
        await _orchestrator(backend, store).collect("hi")


async def test_failing_hook_does_not_break_the_turn(store: AgentStore) -> None:
    async def hook(agent_id: str) -> None:
        raise RuntimeError("skills missing")

    backend = FakeBackend(Script(events=[assistant("hi"), result()]))
    orch = _orchestrator(backend, store, post_create_hooks=[hook])

    outcome = await orch.run_turn("hi", FakeAdapter(), "100")
    await orch.wait_for_hooks()

    assert outcome.delivered
    assert store.agent_id == "agent-new"


async def test_collect_raises_when_stream_goes_silent(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[], hang=True))

    with pytest.raises(StreamIdleTimeout):
        await _orchestrator(backend, store, idle_timeout_ms=20).collect("hi")


class _SlowSendAdapter(FakeAdapter):
    async def send_message(self, msg):
        await asyncio.sleep(0.01)
        return await super().send_message(msg)


async def test_post_create_hooks_start_after_the_reply_is_delivered(store: AgentStore) -> None:
    backend = FakeBackend(Script(events=[result(success=False, error="busy")]))
    adapter = _SlowSendAdapter(editing=False)
    seen_by_hook: list[list[str]] = []

    async def hook(agent_id: str) -> None:
        seen_by_hook.append(list(adapter.texts))

    orch = _orchestrator(backend, store, post_create_hooks=[hook])
    await orch.run_turn("hello", adapter, "100")
    await orch.wait_for_hooks()

    assert seen_by_hook == [[run_failed_text("busy")]]
