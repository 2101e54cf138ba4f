"""
safety/confirmation_policy.py — Confirmation Policies

Decides when an action must wait for an explicit human confirm/cancel.
Exactly one policy runs per deployment; stacking them would ask the user
twice for the same action.

    PromptPrecheckPolicy  gate the PROMPT before the agent is called, when
                          it contains an action keyword ("delete", ...).
                          Confirming sends the original prompt.
    ReplyDrivenPolicy     call the agent first; gate the follow-through
                          when the REPLY asks for consent ("Would you like
                          me to ...?"). Confirming sends "Yes, please {action}".
    NoConfirmationPolicy  never gate.

Usage:
    policy = create_policy("precheck", keywords=["delete", "drop"])
    pending = policy.before_send(prompt)
    if pending is None:
        reply = await gateway.invoke(prompt, ...)
        pending = policy.after_reply(prompt, reply.result)
"""

from __future__ import annotations

import re
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from agent.classifier import extract_action_phrase, reply_requests_confirmation
from observability.logger import get_logger

log = get_logger(__name__)

RESUME_TEMPLATE = "Yes, please {action}"


@dataclass(frozen=True)
class PendingAction:
    """An action held back until the user confirms it."""
    origin_prompt: str
    resume_text: str
    action: str
    reason: str
    id: str = field(default_factory=lambda: f"act_{uuid.uuid4().hex[:8]}")
    created_at: float = field(default_factory=time.time)


class ConfirmationPolicy(ABC):
    """When to hold an action for confirmation."""

    name: str = "base"

    @abstractmethod
    def before_send(self, prompt: str) -> Optional[PendingAction]:
        """Pending action for a prompt that must not be sent yet, else None."""
        ...

    @abstractmethod
    def after_reply(self, prompt: str, reply_text: str) -> Optional[PendingAction]:
        """Pending action for a reply whose follow-through needs consent, else None."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"


class NoConfirmationPolicy(ConfirmationPolicy):
    name = "off"

    def before_send(self, prompt: str) -> Optional[PendingAction]:
        return None

    def after_reply(self, prompt: str, reply_text: str) -> Optional[PendingAction]:
        return None


class PromptPrecheckPolicy(ConfirmationPolicy):
    """Whole-word keyword match on the prompt itself."""

    name = "precheck"

    def __init__(self, keywords: Sequence[str]):
        self._keywords = [k.strip().lower() for k in keywords if k and k.strip()]
        self._patterns = [
            (k, re.compile(rf"\b{re.escape(k)}\b", re.IGNORECASE)) for k in self._keywords
        ]

    @property
    def keywords(self) -> list[str]:
        return list(self._keywords)

    def matched_keyword(self, prompt: str) -> Optional[str]:
        for keyword, pattern in self._patterns:
            if pattern.search(prompt):
                return keyword
        return None

    def before_send(self, prompt: str) -> Optional[PendingAction]:
        keyword = self.matched_keyword(prompt)
        if keyword is None:
            return None
        log.info("confirmation.precheck_hit", keyword=keyword)
        return PendingAction(
            origin_prompt=prompt,
            resume_text=prompt,
            action=prompt,
            reason=f"Prompt contains the action keyword '{keyword}'",
        )

    def after_reply(self, prompt: str, reply_text: str) -> Optional[PendingAction]:
        return None


class ReplyDrivenPolicy(ConfirmationPolicy):
    """Gate the agent's offered follow-through."""

    name = "reply"

    def before_send(self, prompt: str) -> Optional[PendingAction]:
        return None

    def after_reply(self, prompt: str, reply_text: str) -> Optional[PendingAction]:
        if not reply_requests_confirmation(reply_text):
            return None
        action = extract_action_phrase(reply_text)
        log.info("confirmation.reply_requests_consent", action=action[:80])
        return PendingAction(
            origin_prompt=prompt,
            resume_text=RESUME_TEMPLATE.format(action=action),
            action=action,
            reason="The agent asked for confirmation before acting",
        )


def create_policy(name: str, keywords: Sequence[str] = ()) -> ConfirmationPolicy:
    """Factory keyed by the confirmation.policy setting."""
    name = (name or "").strip().lower()
    if name == "precheck":
        return PromptPrecheckPolicy(keywords)
    if name == "reply":
        return ReplyDrivenPolicy()
    if name == "off":
        return NoConfirmationPolicy()
    raise ValueError(f"Unknown confirmation policy: '{name}'")
