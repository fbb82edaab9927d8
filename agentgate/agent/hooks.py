"""One-time setup run in the background after a brand-new agent is created."""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path

from loguru import logger

from agentgate.providers.base import AgentBackend

PostCreateHook = Callable[[str], Awaitable[None]]


def name_agent_hook(backend: AgentBackend, name: str) -> PostCreateHook:
    """Rename the new agent to *name*."""

    async def _hook(agent_id: str) -> None:
        if await backend.rename_agent(agent_id, name):
            logger.info(f"[Hooks] Agent {agent_id} named {name!r}")

    return _hook


def agent_skills_dir(agents_root: Path, agent_id: str) -> Path:
    return agents_root / agent_id / "skills"


def install_skills(source_dir: Path, target_dir: Path) -> list[str]:
    """Copy each skill directory not already present in *target_dir*."""
    if not source_dir.is_dir():
        return []
    target_dir.mkdir(parents=True, exist_ok=True)
    installed = []
    for src in sorted(source_dir.iterdir()):
        if not src.is_dir() or src.name.startswith("."):
            continue
        dest = target_dir / src.name
        if dest.exists():
            continue
        shutil.copytree(src, dest)
        installed.append(src.name)
    return installed


def install_skills_hook(source_dir: Path, agents_root: Path) -> PostCreateHook:
    """Copy bundled skills into ``<agents_root>/<agent_id>/skills``."""

    async def _hook(agent_id: str) -> None:
        target = agent_skills_dir(agents_root, agent_id)
        installed = await asyncio.to_thread(install_skills, source_dir, target)
        if installed:
            logger.info(f"[Hooks] Installed skills for {agent_id}: {', '.join(installed)}")

    return _hook
