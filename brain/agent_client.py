"""
brain/agent_client.py — External Agent Service Client

Transport for the one outbound dependency: the hosted language-model agent.
Every call carries the session handle (so the service threads it into an
ongoing conversation) and the input text.

    POST {base_url}/agents/{agent_id}/agentAliases/{alias_id}/sessions/{handle}/text
    Authorization: Bearer <AGENT_SERVICE_API_KEY>
    {"inputText": "..."}

The service answers either with one JSON document (see brain/types.py for
the accepted shapes) or with an NDJSON stream, one chunk event per line,
which is accumulated in delivery order into a ChunkedReply.

Errors are mapped onto the AgentUnavailableError family; nothing here
retries, because the action behind a prompt may not be idempotent.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import quote

import httpx

from brain.types import AgentReply, AgentRequest, ChunkedReply, decode_chunk, parse_reply
from exceptions import (
    AgentConnectionError,
    AgentNotConfiguredError,
    UnrecognizedReplyShapeError,
)
from observability.logger import get_logger

log = get_logger(__name__)

_STREAM_CONTENT_TYPES = ("application/x-ndjson", "application/jsonl", "application/json-seq")


class BaseAgentClient(ABC):
    """
    Abstract base for agent service transports.

    Subclasses must implement:
      - invoke()       -> send one request, return the parsed reply shape
      - health_check() -> True when the service is reachable
    """

    @abstractmethod
    async def invoke(self, request: AgentRequest) -> AgentReply:
        """Send one prompt and return the parsed (not yet normalised) reply."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class HttpAgentClient(BaseAgentClient):
    """
    httpx-based client for the agent service REST endpoint.

    A fresh AsyncClient is opened per call; pass ``transport`` to route
    requests somewhere else (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        base_url: str,
        agent_id: str,
        alias_id: str,
        api_key: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = (base_url or "").rstrip("/")
        self._agent_id = agent_id
        self._alias_id = alias_id
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "HttpAgentClient":
        svc = settings.agent_service
        return cls(
            base_url=svc.base_url,
            agent_id=svc.agent_id,
            alias_id=svc.alias_id,
            api_key=settings.agent_service_api_key,
            timeout=svc.timeout_seconds,
            transport=transport,
        )

    # ── Configuration ─────────────────────────────────────────────────────────

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url and self._agent_id and self._alias_id and self._api_key)

    def _require_config(self) -> None:
        missing = [
            name for name, value in (
                ("base_url", self._base_url),
                ("agent_id", self._agent_id),
                ("alias_id", self._alias_id),
                ("api_key", self._api_key),
            ) if not value
        ]
        if missing:
            raise AgentNotConfiguredError(
                f"Agent service is not configured (missing: {', '.join(missing)})"
            )

    def _url(self, handle: str) -> str:
        return (
            f"{self._base_url}/agents/{quote(self._agent_id, safe='')}"
            f"/agentAliases/{quote(self._alias_id, safe='')}"
            f"/sessions/{quote(handle, safe='')}/text"
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Accept": "application/json, application/x-ndjson",
            },
        )

    # ── Invoke ────────────────────────────────────────────────────────────────

    async def invoke(self, request: AgentRequest) -> AgentReply:
        self._require_config()
        url = self._url(request.session_handle)
        log.debug("agent_client.invoke.start", session_id=request.session_handle,
                  input_len=len(request.input_text))

        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=request.to_payload()) as response:
                    if response.status_code in (401, 403):
                        raise AgentNotConfiguredError(
                            f"Agent service rejected credentials (HTTP {response.status_code})",
                            status_code=response.status_code,
                        )
                    if response.status_code >= 400:
                        raise AgentConnectionError(
                            f"Agent service returned HTTP {response.status_code}",
                            status_code=response.status_code,
                        )

                    content_type = response.headers.get("content-type", "").lower()
                    if any(ct in content_type for ct in _STREAM_CONTENT_TYPES):
                        return await self._read_stream(response)

                    body = await response.aread()
        except httpx.TimeoutException as e:
            raise AgentConnectionError(f"Agent service timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AgentConnectionError(f"Cannot reach agent service: {e}") from e

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise UnrecognizedReplyShapeError(keys=["<non-json body>"]) from e
        return parse_reply(payload)

    async def _read_stream(self, response: httpx.Response) -> ChunkedReply:
        """Accumulate NDJSON chunk events in the order they arrive."""
        chunks: list[str] = []
        events: list[Any] = []
        async for line in response.aiter_lines():
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except ValueError:
                event = line
            events.append(event)
            chunks.append(decode_chunk(event))
        log.debug("agent_client.stream.done", chunks=len(chunks))
        return ChunkedReply(chunks=tuple(chunks), raw={"completion": events})

    async def health_check(self) -> bool:
        if not self.is_configured:
            return False
        try:
            async with self._client() as client:
                resp = await client.get(f"{self._base_url}/agents/{quote(self._agent_id, safe='')}")
            return resp.status_code < 500
        except httpx.HTTPError as e:
            log.warning("agent_client.health_check.failed", error=str(e))
            return False

    def __repr__(self) -> str:
        return f"<HttpAgentClient base_url={self._base_url!r} agent={self._agent_id!r}>"
