"""
agent/context_enhancer.py — Prompt Context Enhancer

The agent service does not reliably remember earlier turns, even when the
same session handle is reused. Short acknowledgements ("yes") and
elliptical follow-ups ("what about staging?") are therefore rewritten into
self-contained prompts before they are sent.

Rules, first match wins:
    1. no history, or a greeting         → unchanged
    2. confirmation + action verb found  → "... Please proceed with the
                                            {verb} operation we discussed."
    3. follow-up                         → "... (Regarding our previous
                                            discussion: {last result})"
    4. anything else                     → unchanged

History is newest-first.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional

from agent.classifier import (
    ACTION_VERBS,
    extract_action_verbs,
    is_confirmation,
    is_follow_up,
    is_greeting,
    truncate_text,
)

CONTINUATION_TEMPLATE = "Please proceed with the {verb} operation we discussed."
FOLLOW_UP_TEMPLATE = "(Regarding our previous discussion: {context})"


def continuation_clause(verb: str) -> str:
    return CONTINUATION_TEMPLATE.format(verb=verb)


def _latest_result(history: Sequence[Any]) -> str:
    latest = history[0]
    value = latest.get("result") if isinstance(latest, dict) else getattr(latest, "result", "")
    return value if isinstance(value, str) else ""


class ContextEnhancer:
    """
    Rewrites prompts that only make sense with earlier turns in view.

    Usage:
        enhancer = ContextEnhancer()
        outbound = enhancer.enhance("yes", history)
    """

    def __init__(
        self,
        history_window: int = 3,
        context_chars: int = 100,
        action_verbs: Sequence[str] = ACTION_VERBS,
    ):
        self._window = history_window
        self._context_chars = context_chars
        self._verbs = tuple(action_verbs)

    @classmethod
    def from_settings(cls, settings) -> "ContextEnhancer":
        conv = settings.conversation
        return cls(
            history_window=conv.history_window,
            context_chars=conv.follow_up_context_chars,
        )

    def continuation_verb(self, prompt: str, history: Sequence[Any]) -> Optional[str]:
        """
        The verb a confirmation should continue, or None when the prompt is
        not a confirmation or recent history mentions no action.
        """
        if not history or not is_confirmation(prompt):
            return None
        verbs = extract_action_verbs(history, self._verbs, limit=self._window)
        return verbs[0] if verbs else None

    @staticmethod
    def is_enhanced(prompt: str) -> bool:
        """True when prompt already carries one of our rewrites."""
        return (
            "operation we discussed." in prompt
            or "(Regarding our previous discussion:" in prompt
        )

    def enhance(self, prompt: str, history: Sequence[Any]) -> str:
        if not history or is_greeting(prompt):
            return prompt

        verb = self.continuation_verb(prompt, history)
        if verb:
            return f"{prompt} {continuation_clause(verb)}"

        if is_follow_up(prompt):
            context = truncate_text(_latest_result(history), self._context_chars)
            return f"{prompt} {FOLLOW_UP_TEMPLATE.format(context=context)}"

        return prompt
