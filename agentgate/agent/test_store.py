import json
from pathlib import Path

from agentgate.agent.store import AgentStore


async def test_record_survives_reload_in_camel_case(tmp_path: Path) -> None:
    path = tmp_path / "agent.json"
    store = AgentStore(path)
    await store.set_agent("agent-1", "https://api.letta.com")
    await store.set_conversation("conv-1")
    await store.set_last_message_target("telegram", "100", "55")

    raw = json.loads(path.read_text())
    assert raw["agentId"] == "agent-1"
    assert raw["conversationId"] == "conv-1"
    assert raw["lastMessageTarget"]["chatId"] == "100"

    reloaded = AgentStore(path)
    assert reloaded.agent_id == "agent-1"
    assert reloaded.conversation_id == "conv-1"
    assert reloaded.last_message_target is not None
    assert reloaded.last_message_target.message_id == "55"
    assert reloaded.record.created_at


def test_missing_or_malformed_file_starts_empty(tmp_path: Path) -> None:
    assert AgentStore(tmp_path / "missing.json").agent_id is None

    bad = tmp_path / "bad.json"
    bad.write_text('{"agentId": 5, "conversationId": [1]}')
    assert AgentStore(bad).agent_id is None


def test_override_applies_only_without_stored_agent(tmp_path: Path) -> None:
    path = tmp_path / "agent.json"
    assert AgentStore(path, agent_id_override="agent-env").agent_id == "agent-env"

    path.write_text(json.dumps({"agentId": "agent-stored"}))
    assert AgentStore(path, agent_id_override="agent-env").agent_id == "agent-stored"


async def test_server_mismatch_ignores_trailing_slash(tmp_path: Path) -> None:
    store = AgentStore(tmp_path / "agent.json")
    assert not store.is_server_mismatch("http://localhost:8283")

    await store.set_agent("agent-1", "http://localhost:8283/")

    assert not store.is_server_mismatch("http://localhost:8283")
    assert store.is_server_mismatch("https://api.letta.com")


async def test_reset_conversation_keeps_agent(tmp_path: Path) -> None:
    store = AgentStore(tmp_path / "agent.json")
    await store.set_agent("agent-1", "https://api.letta.com")
    await store.set_conversation("conv-1")

    await store.reset_conversation()
    assert store.agent_id == "agent-1"
    assert store.conversation_id is None

    await store.reset()
    assert store.agent_id is None
    assert AgentStore(tmp_path / "agent.json").agent_id is None
