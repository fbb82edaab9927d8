"""Wraps inbound chat messages in the metadata envelope the agent sees."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agentgate.bus.events import InboundAttachment, InboundMessage, ReactionEvent

REMINDER_OPEN = "<system-reminder>"
REMINDER_CLOSE = "</system-reminder>"

# Formatting syntax each platform renders
CHANNEL_FORMATS: dict[str, str] = {
    "telegram": "*bold* _italic_ `code` [links](url) ```code blocks``` - NO: headers, tables",
    "slack": "**bold** _italic_ `code` [links](url) ```code blocks``` - NO: headers, tables",
    "discord": "**bold** *italic* `code` [links](url) ```code blocks``` - NO: headers, tables",
    "whatsapp": "*bold* _italic_ `code` - NO: headers, code fences, links, tables",
    "signal": "ONLY: *bold* _italic_ `code` - NO: headers, code fences, links, quotes, tables",
}

LISTENING_HEADER = "[OBSERVATION ONLY - Update memories. Do not reply unless addressed.]"


@dataclass
class EnvelopeOptions:
    timezone: str = "local"  # "local", "utc" or an IANA name
    include_day: bool = True
    include_sender: bool = True
    include_group: bool = True


@dataclass
class SessionContext:
    """Shown once, on the first message from a chat."""

    agent_id: str | None = None
    agent_name: str | None = None
    server_url: str | None = None


def _resolve_tz(name: str) -> tzinfo | None:
    if name == "utc":
        return timezone.utc
    if name == "local":
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _localize(ts: datetime, options: EnvelopeOptions) -> datetime:
    tz = _resolve_tz(options.timezone)
    if ts.tzinfo is None:
        ts = ts.astimezone()  # naive = local wall clock
    return ts.astimezone(tz) if tz is not None else ts.astimezone()


def _clock(ts: datetime) -> str:
    hour = ts.hour % 12 or 12
    return f"{hour}:{ts.minute:02d} {'AM' if ts.hour < 12 else 'PM'}"


def format_timestamp(ts: datetime, options: EnvelopeOptions | None = None) -> str:
    """``Monday, Feb 2, 12:00 PM UTC``"""
    options = options or EnvelopeOptions()
    local = _localize(ts, options)
    text = f"{local:%b} {local.day}, {_clock(local)} {local.tzname() or ''}".rstrip()
    return f"{local:%A}, {text}" if options.include_day else text


def format_short_time(ts: datetime, options: EnvelopeOptions | None = None) -> str:
    return _clock(_localize(ts, options or EnvelopeOptions()))


def format_phone_number(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11 and digits.startswith("1"):
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"+1 ({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return f"+{digits}" if phone.startswith("+") else digits


def format_sender(msg: InboundMessage) -> str:
    if msg.user_name and msg.user_name.strip():
        return msg.user_name.strip()
    if msg.channel in ("slack", "discord"):
        return f"@{msg.user_handle or msg.user_id}"
    if msg.channel in ("whatsapp", "signal") and len(re.sub(r"\D", "", msg.user_id)) >= 10:
        return format_phone_number(msg.user_id)
    if msg.channel == "telegram" and msg.user_handle:
        return f"@{msg.user_handle}"
    return msg.user_id


def _format_group_name(channel: str, name: str) -> str:
    if channel in ("slack", "discord") and not name.startswith("#"):
        return f"#{name}"
    return name


def format_bytes(size: int | None) -> str | None:
    if not size or size < 0:
        return None
    for unit, scale in (("GB", 1024**3), ("MB", 1024**2), ("KB", 1024)):
        if size >= scale:
            return f"{size / scale:.1f} {unit}"
    return f"{size} B"


def _attachment_line(attachment: InboundAttachment) -> str:
    name = attachment.name or attachment.id or "attachment"
    details = [d for d in (attachment.mime_type, format_bytes(attachment.size)) if d]
    line = f"  - {name}" + (f" ({', '.join(details)})" if details else "")
    if attachment.local_path:
        return f"{line} saved to {attachment.local_path}"
    if attachment.url:
        return f"{line} {attachment.url}"
    return line


def _metadata_lines(msg: InboundMessage, options: EnvelopeOptions) -> list[str]:
    lines = [
        f"- **Channel**: {msg.channel.capitalize()}",
        f"- **Chat ID**: {msg.chat_id}",
    ]
    if msg.message_id:
        lines.append(f"- **Message ID**: {msg.message_id}")
    if options.include_sender:
        lines.append(f"- **Sender**: {format_sender(msg)}")
    lines.append(f"- **Timestamp**: {format_timestamp(msg.timestamp, options)}")
    if hint := CHANNEL_FORMATS.get(msg.channel):
        lines.append(f"- **Format support**: {hint}")
    return lines


def _chat_context_lines(msg: InboundMessage, options: EnvelopeOptions) -> list[str]:
    lines: list[str] = []
    if msg.is_group:
        lines.append("- **Type**: Group chat")
        if options.include_group and msg.group_name and msg.group_name.strip():
            lines.append(f"- **Group**: {_format_group_name(msg.channel, msg.group_name.strip())}")
        if msg.was_mentioned:
            lines.append("- **Mentioned**: yes")
    else:
        lines.append("- **Type**: Direct message")

    if msg.reply_to_user:
        lines.append(f"- **Replying to**: {msg.reply_to_user}")
    if isinstance(msg, ReactionEvent) and msg.reaction is not None:
        r = msg.reaction
        lines.append(f"- **Reaction**: {r.action} {r.emoji} on message {r.message_id}")
    if msg.attachments:
        lines.append("- **Attachments**:")
        lines.extend(_attachment_line(a) for a in msg.attachments)
    return lines


def _session_lines(ctx: SessionContext) -> list[str]:
    lines = []
    if ctx.agent_name or ctx.agent_id:
        suffix = f" ({ctx.agent_id})" if ctx.agent_id else ""
        lines.append(f"- **Agent**: {ctx.agent_name or 'agentgate'}{suffix}")
    if ctx.server_url:
        lines.append(f"- **Server**: {ctx.server_url}")
    return lines


def format_message_envelope(
    msg: InboundMessage,
    options: EnvelopeOptions | None = None,
    session_context: SessionContext | None = None,
) -> str:
    """Metadata in a ``<system-reminder>`` block, message text after it."""
    options = options or EnvelopeOptions()
    sections: list[str] = []

    if session_context is not None and (lines := _session_lines(session_context)):
        sections.append("## Session Context\n" + "\n".join(lines))
    sections.append("## Message Metadata\n" + "\n".join(_metadata_lines(msg, options)))
    sections.append("## Chat Context\n" + "\n".join(_chat_context_lines(msg, options)))
    sections.append("## Response Directives\n- To skip replying: `<no-reply/>`")

    reminder = f"{REMINDER_OPEN}\n" + "\n\n".join(sections) + f"\n{REMINDER_CLOSE}"
    body = msg.text.strip()
    return f"{reminder}\n\n{body}" if body else reminder


def format_group_batch_envelope(
    messages: list[InboundMessage],
    options: EnvelopeOptions | None = None,
    listening: bool = False,
) -> str:
    """Render a burst of group messages as a compact chat log.

    ::

        [GROUP CHAT - telegram:-100123 - Team - 2 messages]
        [4:30 PM] Alice: hey
        [4:31 PM] @bob: hi
    """
    if not messages:
        return ""
    options = options or EnvelopeOptions()
    first = messages[0]

    header_parts = ["GROUP CHAT", f"{first.channel}:{first.chat_id}"]
    if first.group_name and first.group_name.strip():
        header_parts.append(_format_group_name(first.channel, first.group_name.strip()))
    header_parts.append(f"{len(messages)} message{'' if len(messages) == 1 else 's'}")
    header = f"[{' - '.join(header_parts)}]"
    if listening:
        header += f"\n{LISTENING_HEADER}"

    lines = []
    for msg in messages:
        parts = [msg.text.strip()] if msg.text.strip() else []
        if isinstance(msg, ReactionEvent) and msg.reaction is not None:
            parts.append(f"[Reaction {msg.reaction.action}: {msg.reaction.emoji}]")
        if msg.attachments:
            parts.append(f"[Attachments: {', '.join(a.name or 'attachment' for a in msg.attachments)}]")
        lines.append(f"[{format_short_time(msg.timestamp, options)}] {format_sender(msg)}: {' '.join(parts) or '(empty)'}")

    hint = CHANNEL_FORMATS.get(first.channel)
    return header + "\n" + "\n".join(lines) + (f"\n(Format: {hint})" if hint else "")
