"""Letta-style REST backend over httpx with server-sent-event streaming."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import asdict
from typing import Any

import httpx
from loguru import logger

from agentgate.providers.base import (
    AgentBackend,
    AgentSessionHandle,
    CreateOptions,
    SessionMode,
    SessionState,
    StreamEvent,
)

_MESSAGE_TYPES = {
    "assistant_message": "assistant",
    "reasoning_message": "reasoning",
    "tool_call_message": "tool_call",
    "tool_return_message": "tool_result",
}


def _text_of(content: Any) -> str:
    """Assistant content is either a string or a list of text parts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(part.get("text", "") for part in content if isinstance(part, dict))
    return str(content)


def parse_sse_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Map one decoded SSE ``data:`` payload to a :class:`StreamEvent`."""
    message_type = payload.get("message_type", "")
    kind = _MESSAGE_TYPES.get(message_type)
    uuid = payload.get("id") or payload.get("otid")

    if kind == "assistant":
        return StreamEvent(type=kind, content=_text_of(payload.get("content")), uuid=uuid, raw=payload)
    if kind == "reasoning":
        return StreamEvent(type=kind, content=payload.get("reasoning") or "", uuid=uuid, raw=payload)
    if kind == "tool_call":
        call = payload.get("tool_call") or {}
        return StreamEvent(
            type=kind,
            content=call.get("arguments") or "",
            uuid=uuid,
            tool_call_id=call.get("tool_call_id"),
            tool_name=call.get("name"),
            raw=payload,
        )
    if kind == "tool_result":
        return StreamEvent(
            type=kind,
            content=_text_of(payload.get("tool_return")),
            uuid=uuid,
            tool_call_id=payload.get("tool_call_id"),
            is_error=payload.get("status") == "error",
            raw=payload,
        )
    if message_type == "stop_reason":
        reason = payload.get("stop_reason", "end_turn")
        failed = reason not in ("end_turn", "requires_approval")
        return StreamEvent(
            type="result",
            success=not failed,
            error=reason if failed else None,
            raw=payload,
        )
    if message_type == "error_message":
        return StreamEvent(
            type="result",
            success=False,
            error=payload.get("message") or payload.get("detail") or "error",
            raw=payload,
        )
    return None


class LettaSession(AgentSessionHandle):
    def __init__(
        self,
        backend: LettaBackend,
        mode: SessionMode,
        agent_id: str | None,
        conversation_id: str | None,
        create_options: CreateOptions | None,
    ) -> None:
        super().__init__(mode, agent_id, conversation_id)
        self._backend = backend
        self._create_options = create_options
        self._response: httpx.Response | None = None

    @property
    def _client(self) -> httpx.AsyncClient:
        return self._backend.client

    async def _initialize(self) -> None:
        if self.mode is SessionState.RESUMING_CONVERSATION:
            data = await self._backend.request("GET", f"/v1/conversations/{self.conversation_id}")
            self.agent_id = data.get("agent_id") or self.agent_id
            return

        if self.mode is SessionState.RESUMING_DEFAULT:
            await self._backend.request("GET", f"/v1/agents/{self.agent_id}")
        elif self.agent_id is None:
            self.agent_id = await self._create_agent()
        self.conversation_id = await self._create_conversation()

    async def _create_agent(self) -> str:
        options = self._create_options or CreateOptions()
        body: dict[str, Any] = {
            "memory_blocks": [
                {k: v for k, v in asdict(block).items() if v is not None} for block in options.memory
            ],
        }
        if options.system_prompt:
            body["system"] = options.system_prompt
        if options.name:
            body["name"] = options.name
        if options.model:
            body["model"] = options.model
        data = await self._backend.request("POST", "/v1/agents/", json=body)
        logger.info(f"[Letta] Created agent {data['id']}")
        return data["id"]

    async def _create_conversation(self) -> str:
        data = await self._backend.request("POST", "/v1/conversations/", json={"agent_id": self.agent_id})
        logger.debug(f"[Letta] Opened conversation {data['id']} for agent {self.agent_id}")
        return data["id"]

    async def _send(self, text: str) -> None:
        request = self._client.build_request(
            "POST",
            f"/v1/conversations/{self.conversation_id}/messages",
            json={
                "messages": [{"role": "user", "content": text}],
                "streaming": True,
                "stream_tokens": True,
            },
            timeout=httpx.Timeout(self._backend.timeout, read=None),
        )
        response = await self._client.send(request, stream=True)
        if response.is_error:
            await response.aread()
            await response.aclose()
            response.raise_for_status()
        self._response = response

    async def _stream(self) -> AsyncIterator[StreamEvent]:
        if self._response is None:
            return
        saw_result = False
        try:
            async for line in self._response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if not data:
                    continue
                if data == "[DONE]":
                    break
                try:
                    payload = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug(f"[Letta] Skipping non-JSON event: {data[:80]}")
                    continue
                event = parse_sse_event(payload)
                if event is None:
                    continue
                saw_result = saw_result or event.is_terminal
                yield event
        finally:
            await self._response.aclose()
            self._response = None
        if not saw_result:
            yield StreamEvent(type="result", success=True)

    async def _abort(self) -> None:
        if not self.agent_id:
            return
        try:
            await self._backend.request("POST", f"/v1/agents/{self.agent_id}/messages/cancel")
        except httpx.HTTPError as exc:
            logger.warning(f"[Letta] Cancel failed for agent {self.agent_id}: {exc}")

    async def _close(self) -> None:
        if self._response is not None:
            await self._response.aclose()
            self._response = None


class LettaBackend(AgentBackend):
    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = client or httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=timeout)

    async def request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = await self.client.request(method, path, **kwargs)
        resp.raise_for_status()
        if not resp.content:
            return {}
        return resp.json()

    def open_session(
        self,
        mode: SessionMode,
        agent_id: str | None = None,
        conversation_id: str | None = None,
        create_options: CreateOptions | None = None,
    ) -> LettaSession:
        return LettaSession(self, mode, agent_id, conversation_id, create_options)

    async def rename_agent(self, agent_id: str, name: str) -> bool:
        try:
            await self.request("PATCH", f"/v1/agents/{agent_id}", json={"name": name})
        except httpx.HTTPError as exc:
            logger.warning(f"[Letta] Failed to rename agent {agent_id}: {exc}")
            return False
        return True

    async def aclose(self) -> None:
        await self.client.aclose()
