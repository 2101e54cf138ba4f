"""
agent/session.py — Conversation View State

One ConversationView exists per active chat surface (a WebSocket
connection, the CLI REPL). It owns the two-state confirmation machine,
the single pending action, and the view's own recent history.

    IDLE ──submit(gated)──▶ AWAITING_CONFIRMATION ──confirm/cancel──▶ IDLE

The agent-side session handle is NOT stored here; it belongs to the
process-wide SessionRegistry and is looked up by user_id on every call.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from enum import Enum
from typing import Optional

from exceptions import NoPendingActionError
from memory.exchange_log import Exchange
from observability.logger import get_logger
from safety.confirmation_policy import PendingAction

log = get_logger(__name__)


class ViewState(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class ConversationView:
    """All runtime state for a single conversation view."""

    def __init__(
        self,
        view_id: str,
        user_id: Optional[str] = None,
        history_size: int = 10,
        history: Optional[list[Exchange]] = None,
    ):
        self.id = view_id
        self.user_id = user_id
        self.created_at = time.time()
        self._history: deque[Exchange] = deque(history or [], maxlen=history_size)
        self._pending: Optional[PendingAction] = None
        self.last_user_turn: Optional[str] = None

        self.turn_count: int = 0
        self.confirmed_count: int = 0
        self.cancelled_count: int = 0

        log.debug("view.created", view_id=view_id, user_id=user_id)

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        user_id: Optional[str] = None,
        history_size: int = 10,
        history: Optional[list[Exchange]] = None,
    ) -> "ConversationView":
        return cls(
            view_id=f"view_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            history_size=history_size,
            history=history,
        )

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ViewState:
        if self._pending is not None:
            return ViewState.AWAITING_CONFIRMATION
        return ViewState.IDLE

    @property
    def is_awaiting(self) -> bool:
        return self._pending is not None

    @property
    def pending(self) -> Optional[PendingAction]:
        return self._pending

    def set_pending(self, action: PendingAction) -> None:
        if self._pending is not None:
            log.info("view.pending_replaced", view_id=self.id, old=self._pending.id)
        self._pending = action
        log.info("view.pending_set", view_id=self.id, action_id=action.id)

    def take_pending(self) -> Optional[PendingAction]:
        """Remove and return the pending action; the view is IDLE afterwards."""
        action, self._pending = self._pending, None
        return action

    def pop_pending(self) -> PendingAction:
        """Like take_pending(), but raises NoPendingActionError when IDLE."""
        action = self.take_pending()
        if action is None:
            raise NoPendingActionError(f"View {self.id} has no pending action")
        return action

    def discard_pending(self, reason: str) -> Optional[PendingAction]:
        action = self.take_pending()
        if action is not None:
            log.info("view.pending_discarded", view_id=self.id,
                     action_id=action.id, reason=reason)
        return action

    # ── History ───────────────────────────────────────────────────────────────

    def record_user_turn(self, prompt: str) -> None:
        self.last_user_turn = prompt
        self.turn_count += 1

    def add_exchange(self, exchange: Exchange) -> None:
        """Newest first; the deque's maxlen evicts the oldest."""
        self._history.appendleft(exchange)

    @property
    def history(self) -> list[Exchange]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    # ── Summary ───────────────────────────────────────────────────────────────

    def status_summary(self) -> dict:
        pending = self._pending
        return {
            "view_id": self.id,
            "user_id": self.user_id,
            "state": self.state.value,
            "pending_action": pending.action if pending else None,
            "turns": self.turn_count,
            "confirmed": self.confirmed_count,
            "cancelled": self.cancelled_count,
            "history_size": len(self._history),
            "uptime_seconds": round(time.time() - self.created_at, 1),
        }

    def __repr__(self) -> str:
        return (f"<ConversationView id={self.id} user={self.user_id} "
                f"state={self.state.value} turns={self.turn_count}>")
