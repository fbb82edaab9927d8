from pathlib import Path

from agentgate.agent.hooks import agent_skills_dir, install_skills, install_skills_hook, name_agent_hook
from agentgate.testing import FakeBackend


def _skill(root: Path, name: str) -> None:
    (root / name).mkdir(parents=True)
    (root / name / "SKILL.md").write_text(f"# {name}\n", encoding="utf-8")


def test_install_skills_copies_new_directories_only(tmp_path: Path) -> None:
    source, target = tmp_path / "bundled", tmp_path / "agent" / "skills"
    _skill(source, "weather")
    _skill(source, "notes")
    _skill(source, ".hidden")
    (source / "README.md").write_text("not a skill", encoding="utf-8")
    _skill(target, "notes")
    (target / "notes" / "SKILL.md").write_text("customized", encoding="utf-8")

    installed = install_skills(source, target)

    assert installed == ["weather"]
    assert (target / "weather" / "SKILL.md").exists()
    assert (target / "notes" / "SKILL.md").read_text(encoding="utf-8") == "customized"
    assert not (target / ".hidden").exists()


def test_install_skills_without_source_is_a_no_op(tmp_path: Path) -> None:
    assert install_skills(tmp_path / "missing", tmp_path / "target") == []
    assert not (tmp_path / "target").exists()


async def test_hooks_rename_and_install(tmp_path: Path) -> None:
    backend = FakeBackend()
    source = tmp_path / "bundled"
    _skill(source, "weather")

    await name_agent_hook(backend, "Gate")("agent-1")
    await install_skills_hook(source, tmp_path / "agents")("agent-1")

    assert backend.renamed == [("agent-1", "Gate")]
    assert (agent_skills_dir(tmp_path / "agents", "agent-1") / "weather" / "SKILL.md").exists()
