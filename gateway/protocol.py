"""
gateway/protocol.py — Gateway WebSocket Message Protocol

Typed message schema for client↔server conversation traffic.
Every message is JSON with a `type` field and a short `id`; replies echo
the request id in `data.reply_to` for correlation.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from agent.response_synthesizer import AgentResponse


# ─────────────────────────────────────────────────────────────────────────────
# Message types
# ─────────────────────────────────────────────────────────────────────────────

class MessageType(str, Enum):
    """All supported message types in the gateway protocol."""

    # Client → Server
    ASK              = "ask"
    CONFIRM          = "confirm"
    CANCEL           = "cancel"
    SESSION_STATUS   = "session.status"
    PING             = "ping"

    # Server → Client
    RESPONSE         = "response"
    CONFIRM_REQUEST  = "confirm_request"
    SESSION_CREATED  = "session.created"
    SESSION_UPDATED  = "session.updated"
    ERROR            = "error"
    PONG             = "pong"


# ─────────────────────────────────────────────────────────────────────────────
# Base message
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class GatewayMessage:
    """
    Universal message envelope for the gateway protocol.

    All fields are optional except `type`. Extra payload goes in `data`.
    """
    type: str
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    session_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize to JSON string, dropping None fields."""
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, default=str)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "GatewayMessage":
        """Parse a JSON string into a GatewayMessage. Raises ValueError."""
        d = json.loads(raw)
        if not isinstance(d, dict):
            raise ValueError("Message must be a JSON object")
        data = d.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError("'data' must be a JSON object")
        return cls(
            type=d.get("type", "error"),
            id=d.get("id") or str(uuid.uuid4())[:8],
            session_id=d.get("session_id"),
            data=data,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Factory helpers: server → client messages
# ─────────────────────────────────────────────────────────────────────────────

def make_response(
    session_id: Optional[str],
    kind: str,
    text: str,
    *,
    trusted: bool = False,
    reply_to: Optional[str] = None,
    extra: Optional[dict] = None,
) -> GatewayMessage:
    """Build a RESPONSE message to send back to the client."""
    data: dict[str, Any] = {
        "kind": kind,
        "text": text,
        "trusted": trusted,
    }
    if reply_to:
        data["reply_to"] = reply_to
    if extra:
        data.update(extra)
    return GatewayMessage(
        type=MessageType.RESPONSE.value,
        session_id=session_id,
        data=data,
    )


def make_confirm_request(
    session_id: Optional[str],
    action_id: str,
    action: str,
    reason: str,
    text: str,
    *,
    trusted: bool = False,
    reply_to: Optional[str] = None,
) -> GatewayMessage:
    """Build a CONFIRM_REQUEST message for a pending action."""
    data: dict[str, Any] = {
        "action_id": action_id,
        "action": action,
        "reason": reason,
        "text": text,
        "trusted": trusted,
    }
    if reply_to:
        data["reply_to"] = reply_to
    return GatewayMessage(
        type=MessageType.CONFIRM_REQUEST.value,
        session_id=session_id,
        data=data,
    )


def from_agent_response(
    resp: AgentResponse,
    *,
    reply_to: Optional[str] = None,
    include_raw: bool = False,
) -> GatewayMessage:
    """AgentResponse → RESPONSE, or CONFIRM_REQUEST when an action is pending."""
    if resp.awaiting_confirmation and resp.pending_action is not None:
        return make_confirm_request(
            resp.session_id,
            action_id=resp.pending_action.id,
            action=resp.pending_action.action,
            reason=resp.pending_action.reason,
            text=resp.text,
            trusted=resp.trusted,
            reply_to=reply_to,
        )
    extra: dict[str, Any] = {}
    if resp.used_fallback:
        extra["fallback"] = True
    if include_raw:
        extra["raw"] = resp.raw
    return make_response(
        resp.session_id,
        kind=resp.kind.value,
        text=resp.text,
        trusted=resp.trusted,
        reply_to=reply_to,
        extra=extra or None,
    )


def make_error(
    code: str,
    message: str,
    *,
    reply_to: Optional[str] = None,
    session_id: Optional[str] = None,
) -> GatewayMessage:
    """Build an ERROR message."""
    data: dict[str, Any] = {"code": code, "message": message}
    if reply_to:
        data["reply_to"] = reply_to
    return GatewayMessage(
        type=MessageType.ERROR.value,
        session_id=session_id,
        data=data,
    )


def make_session_created(view_id: str, user_id: str) -> GatewayMessage:
    """Build a SESSION_CREATED greeting sent once per connection."""
    return GatewayMessage(
        type=MessageType.SESSION_CREATED.value,
        data={"view_id": view_id, "user_id": user_id},
    )


def make_session_updated(session_id: Optional[str], **changes) -> GatewayMessage:
    """Build a SESSION_UPDATED message with changed fields."""
    return GatewayMessage(
        type=MessageType.SESSION_UPDATED.value,
        session_id=session_id,
        data=changes,
    )


def make_pong() -> GatewayMessage:
    """Build a PONG keepalive response."""
    return GatewayMessage(type=MessageType.PONG.value)
