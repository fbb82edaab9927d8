"""Pairing store.

Pending pairing requests and approved allow-lists, one pair of JSON files
per channel under the credentials directory:

- ``<channel>-pairing.json``   ``{version, requests: [...]}``
- ``<channel>-allowFrom.json`` ``{version, allowFrom: [...]}``

Every update is read-modify-write with an atomic rename.  Reads and the
in-memory modification never yield to the event loop, so two coroutines
in one process cannot interleave an update.  Multiple writing processes
are not supported.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from loguru import logger

from agentgate.pairing.types import (
    AccessDecision,
    AllowFromFile,
    DmPolicy,
    PairingApproval,
    PairingFile,
    PairingMeta,
    PairingRequest,
)
from agentgate.utils.atomic_io import AtomicFileWriter, read_json
from agentgate.utils.helpers import isoformat_z, parse_iso, safe_filename, utc_now

CODE_LENGTH = 8
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O/1/I
CODE_TTL = timedelta(hours=1)
MAX_PENDING = 3
_MAX_CODE_ATTEMPTS = 500


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def generate_unique_code(existing: set[str]) -> str:
    for _ in range(_MAX_CODE_ATTEMPTS):
        code = generate_code()
        if code not in existing:
            return code
    raise RuntimeError("Failed to generate unique pairing code")


def format_pairing_message(channel: str, code: str) -> str:
    """Text sent to an unknown DM sender together with their code."""
    return (
        "Hi! This bot requires pairing.\n\n"
        f"Your code: **{code}**\n\n"
        "Ask the owner to run:\n"
        f"`agentgate pairing approve {channel} {code}`\n\n"
        "This code expires in 1 hour."
    )


class PairingStore:
    """Per-channel pending pairing codes and approved senders."""

    def __init__(
        self,
        credentials_dir: Path,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.credentials_dir = credentials_dir
        self._now = now
        self._writer = AtomicFileWriter(file_mode=0o600, dir_mode=0o700)

    # ------------------------------------------------------------------
    # Paths / raw I/O
    # ------------------------------------------------------------------

    def pairing_path(self, channel: str) -> Path:
        return self.credentials_dir / f"{safe_filename(channel)}-pairing.json"

    def allow_from_path(self, channel: str) -> Path:
        return self.credentials_dir / f"{safe_filename(channel)}-allowFrom.json"

    def _read_requests(self, channel: str) -> list[PairingRequest]:
        raw = read_json(self.pairing_path(channel), {})
        try:
            return PairingFile.model_validate(raw).requests
        except ValueError as exc:
            logger.warning(f"Ignoring malformed pairing store for {channel}: {exc}")
            return []

    async def _write_requests(self, channel: str, requests: list[PairingRequest]) -> None:
        data = PairingFile(requests=requests).model_dump(by_alias=True, exclude_none=True)
        await self._writer.write_json(self.pairing_path(channel), data)

    # ------------------------------------------------------------------
    # Expiry helpers
    # ------------------------------------------------------------------

    def _is_expired(self, request: PairingRequest) -> bool:
        created = parse_iso(request.created_at)
        if created is None:
            return True
        return self._now() - created >= CODE_TTL

    def _prune_expired(self, requests: Iterable[PairingRequest]) -> list[PairingRequest]:
        return [r for r in requests if not self._is_expired(r)]

    @staticmethod
    def _prune_excess(requests: list[PairingRequest]) -> list[PairingRequest]:
        if len(requests) <= MAX_PENDING:
            return requests
        # Keep the most recently seen ones
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        ranked = sorted(
            requests,
            key=lambda r: parse_iso(r.last_seen_at) or epoch,
            reverse=True,
        )
        return ranked[:MAX_PENDING]

    # ------------------------------------------------------------------
    # Allow-list
    # ------------------------------------------------------------------

    def read_allow_from(self, channel: str) -> list[str]:
        raw = read_json(self.allow_from_path(channel), {})
        try:
            return AllowFromFile.model_validate(raw).allow_from
        except ValueError as exc:
            logger.warning(f"Ignoring malformed allow-list for {channel}: {exc}")
            return []

    async def add_to_allow_from(self, channel: str, user_id: str) -> None:
        normalized = str(user_id).strip()
        allow_from = self.read_allow_from(channel)
        if not normalized or normalized in allow_from:
            return
        allow_from.append(normalized)
        data = AllowFromFile(allow_from=allow_from).model_dump(by_alias=True)
        await self._writer.write_json(self.allow_from_path(channel), data)
        logger.info(f"[Pairing] {channel}: allowed {normalized}")

    def is_user_allowed(
        self,
        channel: str,
        user_id: str,
        static_allowlist: Iterable[str] | None = None,
    ) -> bool:
        """True if *user_id* is in the static allowlist or the stored one."""
        normalized = str(user_id).strip()
        if static_allowlist is not None and normalized in {str(u).strip() for u in static_allowlist}:
            return True
        return normalized in self.read_allow_from(channel)

    def check_access(
        self,
        channel: str,
        user_id: str,
        policy: DmPolicy = "pairing",
        static_allowlist: Iterable[str] | None = None,
    ) -> AccessDecision:
        """Resolve a DM sender against the channel's policy."""
        if policy == "open":
            return AccessDecision.ALLOWED
        if self.is_user_allowed(channel, user_id, static_allowlist):
            return AccessDecision.ALLOWED
        if policy == "allowlist":
            return AccessDecision.BLOCKED
        return AccessDecision.PAIRING

    # ------------------------------------------------------------------
    # Pairing requests
    # ------------------------------------------------------------------

    async def list_pairing_requests(self, channel: str) -> list[PairingRequest]:
        """Pending requests, oldest first.  Expired/excess entries are pruned."""
        requests = self._read_requests(channel)
        before = len(requests)
        requests = self._prune_excess(self._prune_expired(requests))
        if len(requests) != before:
            await self._write_requests(channel, requests)
        return sorted(requests, key=lambda r: r.created_at)

    async def upsert_pairing_request(
        self,
        channel: str,
        user_id: str,
        meta: PairingMeta | None = None,
    ) -> tuple[str, bool]:
        """Create or refresh a pairing request.

        Returns ``(code, created)``.  ``("", False)`` means the channel
        already has the maximum number of pending requests; the caller
        should ask the user to try again later.
        """
        uid = str(user_id).strip()
        now = isoformat_z(self._now())
        stored = self._read_requests(channel)
        requests = self._prune_expired(stored)
        existing_codes = {r.code.upper() for r in requests}

        for idx, existing in enumerate(requests):
            if existing.id != uid:
                continue
            code = existing.code or generate_unique_code(existing_codes)
            requests[idx] = existing.model_copy(
                update={"code": code, "last_seen_at": now, "meta": meta or existing.meta}
            )
            await self._write_requests(channel, self._prune_excess(requests))
            return code, False

        requests = self._prune_excess(requests)
        if len(requests) >= MAX_PENDING:
            if len(requests) != len(stored):
                await self._write_requests(channel, requests)
            logger.info(f"[Pairing] {channel}: pending limit reached, refusing {uid}")
            return "", False

        code = generate_unique_code(existing_codes)
        requests.append(
            PairingRequest(id=uid, code=code, created_at=now, last_seen_at=now, meta=meta)
        )
        await self._write_requests(channel, requests)
        logger.info(f"[Pairing] {channel}: new pairing request from {uid}")
        return code, True

    async def approve_pairing_code(self, channel: str, code: str) -> PairingApproval | None:
        """Approve *code* (case-insensitive) and allow its sender.

        Returns ``None`` when no pending request carries the code; pruned
        expired entries are still written back.
        """
        requests = self._prune_expired(self._read_requests(channel))
        normalized = code.strip().upper()
        match = next((r for r in requests if r.code.upper() == normalized), None)
        if match is None:
            await self._write_requests(channel, requests)
            return None

        requests.remove(match)
        await self._write_requests(channel, requests)
        await self.add_to_allow_from(channel, match.id)
        return PairingApproval(user_id=match.id, meta=match.meta)
