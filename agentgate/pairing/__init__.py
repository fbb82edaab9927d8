"""DM pairing: code-based access control for unknown senders."""

from agentgate.pairing.store import PairingStore, format_pairing_message
from agentgate.pairing.types import (
    AccessDecision,
    DmPolicy,
    PairingApproval,
    PairingMeta,
    PairingRequest,
)

__all__ = [
    "AccessDecision",
    "DmPolicy",
    "PairingApproval",
    "PairingMeta",
    "PairingRequest",
    "PairingStore",
    "format_pairing_message",
]
