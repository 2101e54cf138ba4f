"""
agent/response_synthesizer.py — Response Synthesizer

Converts orchestrator outcomes (gateway results, pending actions, notices)
into AgentResponse objects that the CLI, WebSocket gateway and HTTP API
can render.

Content trust: every response says whether its text may be rendered as
markup. Agent-originated replies are trusted (Markdown allowed). Anything
that echoes user text (precheck confirmations, the echo fallback, user
turns) is untrusted and must be shown literally/escaped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from brain.types import GatewayResult
from safety.confirmation_policy import PendingAction


class ResponseKind(str, Enum):
    TEXT = "text"
    CONFIRMATION = "confirmation"
    CANCELLED = "cancelled"
    NOTICE = "notice"
    ERROR = "error"
    STATUS = "status"


@dataclass
class AgentResponse:
    """
    Unified output object, ready for an interface to render.

    Always has `text`. `pending_action` is set on CONFIRMATION responses.
    """
    kind: ResponseKind
    text: str
    trusted: bool = False
    session_id: Optional[str] = None
    pending_action: Optional[PendingAction] = None
    used_fallback: bool = False
    raw: Any = None
    metadata: dict = field(default_factory=dict)

    @property
    def awaiting_confirmation(self) -> bool:
        return self.kind == ResponseKind.CONFIRMATION

    def to_dict(self, include_raw: bool = False) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "text": self.text,
            "trusted": self.trusted,
        }
        if self.session_id:
            d["session_id"] = self.session_id
        if self.pending_action is not None:
            d["pending_action"] = {
                "id": self.pending_action.id,
                "action": self.pending_action.action,
                "resume_text": self.pending_action.resume_text,
                "reason": self.pending_action.reason,
            }
        if self.used_fallback:
            d["fallback"] = True
        if include_raw:
            d["raw"] = self.raw
        return d

    def __str__(self) -> str:
        return self.text


class ResponseSynthesizer:
    """Formats orchestrator outcomes into AgentResponse objects."""

    # ── Gateway results ───────────────────────────────────────────────────────

    def from_gateway(self, outcome: GatewayResult) -> AgentResponse:
        return AgentResponse(
            kind=ResponseKind.TEXT,
            text=outcome.result,
            trusted=not outcome.used_fallback,
            session_id=outcome.session_id,
            used_fallback=outcome.used_fallback,
            raw=outcome.raw,
            metadata={"reply_kind": outcome.reply_kind.value if outcome.reply_kind else None},
        )

    def reply_confirmation(self, outcome: GatewayResult, action: PendingAction) -> AgentResponse:
        """The agent's own question, shown as-is, with the pending action attached."""
        resp = self.from_gateway(outcome)
        resp.kind = ResponseKind.CONFIRMATION
        resp.pending_action = action
        resp.metadata["reason"] = action.reason
        return resp

    # ── Confirmation ──────────────────────────────────────────────────────────

    def confirmation_request(self, action: PendingAction) -> AgentResponse:
        text = (
            "Confirmation required before I send this request:\n\n"
            f"  {action.origin_prompt}\n\n"
            f"Reason: {action.reason}\n"
            "Reply 'yes' to go ahead or 'no' to cancel."
        )
        return AgentResponse(
            kind=ResponseKind.CONFIRMATION,
            text=text,
            trusted=False,
            pending_action=action,
            metadata={"reason": action.reason},
        )

    def cancelled(self, action: Optional[PendingAction] = None) -> AgentResponse:
        text = "Cancelled. Nothing was sent to the agent."
        if action is not None:
            text = f"Cancelled: {action.action}"
        return AgentResponse(kind=ResponseKind.CANCELLED, text=text, trusted=False)

    def nothing_pending(self) -> AgentResponse:
        return self.notice("There is nothing waiting for confirmation.")

    # ── Notices / errors / status ─────────────────────────────────────────────

    def notice(self, message: str) -> AgentResponse:
        return AgentResponse(kind=ResponseKind.NOTICE, text=message, trusted=True)

    def error(self, message: str, detail: str = "") -> AgentResponse:
        text = f"Error: {message}"
        if detail:
            text += f"\n{_clip(detail, 500)}"
        return AgentResponse(kind=ResponseKind.ERROR, text=text, trusted=False)

    def status(self, view, session_id: Optional[str] = None) -> AgentResponse:
        s = view.status_summary()
        s["session_id"] = session_id
        pending = f"\nPending: {s['pending_action']}" if s["pending_action"] else ""
        text = (
            f"View: {s['view_id']}\n"
            f"Agent session: {session_id or '(none yet)'}\n"
            f"State: {s['state']}\n"
            f"Turns: {s['turns']}  ·  Confirmed: {s['confirmed']}  ·  "
            f"Cancelled: {s['cancelled']}\n"
            f"History: {s['history_size']} exchange(s)"
            f"{pending}"
        )
        return AgentResponse(kind=ResponseKind.STATUS, text=text, trusted=False,
                             session_id=session_id, metadata=s)


def _clip(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"…(+{len(text) - max_chars} chars)"
