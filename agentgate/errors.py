"""Error taxonomy for turn processing."""

from __future__ import annotations


class GatewayError(RuntimeError):
    """Base class for agentgate errors."""


class SessionInitError(GatewayError):
    """Session initialize failed or timed out."""

    def __init__(self, message: str, mode: str = "") -> None:
        super().__init__(message)
        self.mode = mode


class SessionSendError(GatewayError):
    """Sending the formatted turn to the agent failed."""


class DeliveryError(GatewayError):
    """An outbound send/edit to a channel failed."""

    def __init__(self, channel: str, chat_id: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"delivery to {channel}:{chat_id} failed{detail}")
        self.channel = channel
        self.chat_id = chat_id
        self.cause = cause


class StreamIdleTimeout(GatewayError):
    """The response stream produced nothing within the idle bound."""


class AgentRunError(GatewayError):
    """The agent run ended with a terminal error result."""


class SessionClosedError(GatewayError):
    """An operation was attempted on a closed (single-use) session handle."""


class QueueStoppedError(GatewayError):
    """The message queue was stopped before the entry could run."""
