from datetime import datetime, timezone

from agentgate.agent.formatter import (
    LISTENING_HEADER,
    EnvelopeOptions,
    SessionContext,
    format_bytes,
    format_group_batch_envelope,
    format_message_envelope,
    format_phone_number,
    format_sender,
    format_timestamp,
)
from agentgate.bus.events import InboundAttachment, InboundMessage, InboundReaction, ReactionEvent

UTC = EnvelopeOptions(timezone="utc")
NOON = datetime(2026, 2, 2, 12, 0, tzinfo=timezone.utc)


def _msg(**kwargs) -> InboundMessage:
    base = dict(channel="telegram", chat_id="100", user_id="42", text="hello", timestamp=NOON, user_name="Ada")
    base.update(kwargs)
    return InboundMessage(**base)


def test_timestamp_formats() -> None:
    assert format_timestamp(NOON, UTC) == "Monday, Feb 2, 12:00 PM UTC"
    assert format_timestamp(NOON, EnvelopeOptions(timezone="utc", include_day=False)) == "Feb 2, 12:00 PM UTC"


def test_sender_fallbacks() -> None:
    assert format_sender(_msg()) == "Ada"
    assert format_sender(_msg(user_name=None, user_handle="ada")) == "@ada"
    assert format_sender(_msg(channel="slack", user_name=" ", user_handle=None, user_id="U1")) == "@U1"
    assert format_sender(_msg(channel="signal", user_name=None, user_id="+15551234567")) == "+1 (555) 123-4567"
    assert format_sender(_msg(user_name=None)) == "42"


def test_phone_and_size_helpers() -> None:
    assert format_phone_number("5551234567") == "+1 (555) 123-4567"
    assert format_phone_number("+447700900123") == "+447700900123"
    assert format_bytes(None) is None
    assert format_bytes(512) == "512 B"
    assert format_bytes(2048) == "2.0 KB"
    assert format_bytes(5 * 1024 * 1024) == "5.0 MB"


def test_direct_message_envelope() -> None:
    text = format_message_envelope(_msg(message_id="9"), UTC)

    assert text.startswith("<system-reminder>\n## Message Metadata")
    assert "- **Channel**: Telegram" in text
    assert "- **Message ID**: 9" in text
    assert "- **Sender**: Ada" in text
    assert "- **Timestamp**: Monday, Feb 2, 12:00 PM UTC" in text
    assert "- **Format support**:" in text
    assert "- **Type**: Direct message" in text
    assert "`<no-reply/>`" in text
    assert "## Session Context" not in text
    assert text.endswith("</system-reminder>\n\nhello")


def test_group_envelope_with_session_context_and_attachments() -> None:
    msg = _msg(
        is_group=True,
        group_name="Team",
        was_mentioned=True,
        reply_to_user="Bob",
        attachments=[InboundAttachment(name="photo.jpg", mime_type="image/jpeg", size=2048, local_path="/tmp/p.jpg")],
    )
    ctx = SessionContext(agent_id="agent-1", agent_name="Gate", server_url="https://api.letta.com")

    text = format_message_envelope(msg, UTC, ctx)

    assert "- **Agent**: Gate (agent-1)" in text
    assert "- **Server**: https://api.letta.com" in text
    assert "- **Type**: Group chat" in text
    assert "- **Group**: Team" in text
    assert "- **Mentioned**: yes" in text
    assert "- **Replying to**: Bob" in text
    assert "  - photo.jpg (image/jpeg, 2.0 KB) saved to /tmp/p.jpg" in text


def test_reaction_envelope_and_empty_body() -> None:
    event = ReactionEvent(
        channel="telegram",
        chat_id="100",
        user_id="42",
        timestamp=NOON,
        reaction=InboundReaction(emoji="👍", message_id="77"),
    )

    text = format_message_envelope(event, UTC)

    assert "- **Reaction**: added 👍 on message 77" in text
    assert text.endswith("</system-reminder>")


def test_group_batch_envelope() -> None:
    messages = [
        _msg(text="hey", is_group=True, group_name="Team", timestamp=datetime(2026, 2, 2, 16, 30, tzinfo=timezone.utc)),
        _msg(text=" ", user_name="Bob", is_group=True, timestamp=datetime(2026, 2, 2, 16, 31, tzinfo=timezone.utc)),
    ]

    text = format_group_batch_envelope(messages, UTC)
    lines = text.splitlines()

    assert lines[0] == "[GROUP CHAT - telegram:100 - Team - 2 messages]"
    assert lines[1] == "[4:30 PM] Ada: hey"
    assert lines[2] == "[4:31 PM] Bob: (empty)"
    assert lines[3].startswith("(Format: ")


def test_listening_batch_carries_observation_header() -> None:
    text = format_group_batch_envelope([_msg(is_group=True)], UTC, listening=True)

    assert text.splitlines()[1] == LISTENING_HEADER
    assert "1 message]" in text.splitlines()[0]
