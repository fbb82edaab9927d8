"""DM pairing types: access policy, pending requests, approvals."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# DM access policy
DmPolicy = Literal["pairing", "allowlist", "open"]

STORE_VERSION = 1


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PairingMeta(_CamelModel):
    """Display metadata captured with a pairing request."""

    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class PairingRequest(_CamelModel):
    id: str  # platform user id
    code: str  # 8-char pairing code
    created_at: str  # ISO timestamp
    last_seen_at: str  # ISO timestamp, refreshed on repeat contact
    meta: PairingMeta | None = None


class PairingFile(_CamelModel):
    """``<channel>-pairing.json`` on disk."""

    version: int = STORE_VERSION
    requests: list[PairingRequest] = Field(default_factory=list)


class AllowFromFile(_CamelModel):
    """``<channel>-allowFrom.json`` on disk."""

    version: int = STORE_VERSION
    allow_from: list[str] = Field(default_factory=list)


class PairingApproval(BaseModel):
    user_id: str
    meta: PairingMeta | None = None


class AccessDecision(str, Enum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    PAIRING = "pairing"
