"""System prompt and starting memory for newly created agents."""

from __future__ import annotations

from agentgate.providers.base import CreateOptions, MemoryBlock

SYSTEM_PROMPT = """You are a persistent assistant with long-term memory.

You are reachable through several chat platforms at once (direct messages
and group chats).  Every inbound message starts with a <system-reminder>
block describing where it came from: channel, chat, sender, time, and the
formatting the platform can render.  Reply in that format.

Your text replies are delivered to the chat the message came from.

Group chats:
- Several messages may arrive together as a chat log.
- A log marked OBSERVATION ONLY is for your memory; nothing you write will
  be delivered, so keep the turn short.
- When you have nothing useful to add, reply with exactly <no-reply/>.

Keep what you learn about people and ongoing work in your memory blocks.
"""

_PERSONA = """I am {name}, a helpful assistant that lives in the user's chat apps.
I keep replies short and to the point on mobile-first platforms."""

_HUMAN = """Nothing is known about the people I talk to yet.
I update this block as I learn names, preferences and ongoing topics."""


def default_memory_blocks(agent_name: str = "agentgate") -> list[MemoryBlock]:
    return [
        MemoryBlock(
            label="persona",
            value=_PERSONA.format(name=agent_name),
            description="Who I am and how I behave.",
        ),
        MemoryBlock(
            label="human",
            value=_HUMAN,
            description="What I know about the people I talk to.",
            limit=5000,
        ),
    ]


def default_create_options(agent_name: str = "agentgate", model: str | None = None) -> CreateOptions:
    return CreateOptions(
        system_prompt=SYSTEM_PROMPT,
        memory=default_memory_blocks(agent_name),
        name=agent_name,
        model=model or None,
    )
