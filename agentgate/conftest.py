from pathlib import Path

import pytest

from agentgate.agent.store import AgentStore
from agentgate.testing import FakeAdapter


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def store(tmp_path: Path) -> AgentStore:
    return AgentStore(tmp_path / "agent.json")
