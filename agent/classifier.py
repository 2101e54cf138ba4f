"""
agent/classifier.py — Utterance & Reply Classifier

Keyword heuristics that label a raw user utterance (greeting, confirmation,
cancellation, follow-up) and an agent reply (asks for consent, implied
action). Every function here is pure.

The heuristics are best-effort. When in doubt they answer False so the
input is treated as an ordinary prompt, never as consent to act.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any

# ─────────────────────────────────────────────────────────────────────────────
# Vocabularies
# ─────────────────────────────────────────────────────────────────────────────

GREETINGS: tuple[str, ...] = (
    "hello", "hi", "hey", "greetings",
    "good morning", "good afternoon", "good evening",
)

CONFIRMATIONS: tuple[str, ...] = (
    "yes", "yeah", "yep", "sure", "ok", "okay", "proceed",
    "confirm", "do it", "go ahead", "sounds good",
)

CANCELLATIONS: tuple[str, ...] = (
    "no", "nope", "cancel", "stop", "abort", "never mind", "don't",
)

# Whole replies accepted as an answer to a pending confirmation.
EXPLICIT_CONFIRMATIONS: frozenset[str] = frozenset(CONFIRMATIONS) | {
    "yes please", "please proceed", "please do", "yes go ahead", "yes do it",
    "ok go ahead", "okay go ahead", "go for it",
}

EXPLICIT_CANCELLATIONS: frozenset[str] = frozenset(CANCELLATIONS) | {
    "no thanks", "no thank you", "cancel that", "cancel it", "stop that",
    "don't do it", "do not do it",
}

FOLLOW_UP_MARKERS: tuple[str, ...] = (
    "what about", "and then", "next", "after that",
    "continue", "more", "tell me more", "elaborate",
)

ACTION_VERBS: tuple[str, ...] = (
    "create", "delete", "update", "modify", "configure",
    "deploy", "install", "setup", "remove", "add",
)

CONFIRMATION_SEEKING_PHRASES: tuple[str, ...] = (
    "would you like me to",
    "should i",
    "do you want me to",
    "do you want to proceed",
    "shall i",
    "would you like to proceed",
    "can i proceed",
    "let me know if you'd like me to",
)

# Tried in order; group 1 is the action phrase.
ACTION_PHRASE_PATTERNS: list[re.Pattern] = [
    re.compile(r"would you like me to\s+([^?.!\n]+)", re.IGNORECASE),
    re.compile(r"do you want me to\s+([^?.!\n]+)", re.IGNORECASE),
    re.compile(r"shall i\s+([^?.!\n]+)", re.IGNORECASE),
    re.compile(r"should i\s+([^?.!\n]+)", re.IGNORECASE),
    re.compile(r"let me know if you'd like me to\s+([^?.!\n]+)", re.IGNORECASE),
]

SECONDARY_CUES: tuple[str, ...] = ("next step", "can proceed", "can help")

GENERIC_SUGGESTION = "proceed with this suggestion"
GENERIC_ACTION = "proceed with the suggested action"

GREETING_MAX_LENGTH = 20
FOLLOW_UP_MAX_LENGTH = 15
RECENT_EXCHANGES = 3

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_REPLY_PUNCTUATION = re.compile(r"[^\w\s']+")


# ─────────────────────────────────────────────────────────────────────────────
# Utterance classification
# ─────────────────────────────────────────────────────────────────────────────


def _matches_at_boundary(text: str, tokens: Iterable[str]) -> bool:
    """Token equals the whole text, opens it, or closes it."""
    lowered = text.lower().strip()
    return any(
        lowered == token
        or lowered.startswith(token + " ")
        or lowered.endswith(" " + token)
        for token in tokens
    )


def is_greeting(text: str) -> bool:
    """Short message that contains a greeting keyword."""
    lowered = text.lower()
    return any(g in lowered for g in GREETINGS) and len(text) < GREETING_MAX_LENGTH


def is_confirmation(text: str) -> bool:
    """
    True for "yes", "yes please", "sounds good" and the like.

    Matching is anchored to the start or end of the utterance so words
    such as "yesterday" or "okayish" don't count as consent.
    """
    return _matches_at_boundary(text, CONFIRMATIONS)


def is_cancellation(text: str) -> bool:
    """True for "no", "cancel that", "never mind" and the like."""
    return _matches_at_boundary(text, CANCELLATIONS)


def _normalize_reply(text: str) -> str:
    return " ".join(_REPLY_PUNCTUATION.sub(" ", text.lower()).split())


def is_explicit_confirmation(text: str) -> bool:
    """
    Strict consent check for answering a pending action: the whole
    utterance must be an affirmation ("yes", "Yes, please!", "go ahead").

    "I'm not sure" or "what should I confirm" are not consent here, even
    though is_confirmation() matches them at a word boundary.
    """
    return _normalize_reply(text) in EXPLICIT_CONFIRMATIONS


def is_explicit_cancellation(text: str) -> bool:
    """The whole utterance is a refusal ("no", "No thanks.", "cancel that")."""
    return _normalize_reply(text) in EXPLICIT_CANCELLATIONS


def is_follow_up(text: str) -> bool:
    """
    Follow-up marker, a short message, or a single token.

    Deliberately permissive: short or one-word inputs are framed as
    continuing the previous topic.
    """
    lowered = text.lower()
    return (
        any(marker in lowered for marker in FOLLOW_UP_MARKERS)
        or len(text) < FOLLOW_UP_MAX_LENGTH
        or " " not in text
    )


def _field(exchange: Any, name: str) -> str:
    if isinstance(exchange, dict):
        value = exchange.get(name)
    else:
        value = getattr(exchange, name, None)
    return value if isinstance(value, str) else ""


def extract_action_verbs(
    recent_exchanges: Sequence[Any],
    verbs: Sequence[str] = ACTION_VERBS,
    limit: int = RECENT_EXCHANGES,
) -> list[str]:
    """
    Action verbs mentioned in the most recent exchanges, deduplicated in
    order of first occurrence.

    Exchanges are newest-first; only the first ``limit`` are scanned.
    Accepts Exchange objects or plain dicts with prompt/result keys.
    """
    found: list[str] = []
    for exchange in list(recent_exchanges)[:limit]:
        combined = f"{_field(exchange, 'prompt')} {_field(exchange, 'result')}".lower()
        for verb in verbs:
            if verb in combined and verb not in found:
                found.append(verb)
    return found


# ─────────────────────────────────────────────────────────────────────────────
# Reply classification
# ─────────────────────────────────────────────────────────────────────────────


def reply_requests_confirmation(reply_text: str) -> bool:
    """True when the agent is asking the user whether to go ahead."""
    lowered = reply_text.lower()
    return any(phrase in lowered for phrase in CONFIRMATION_SEEKING_PHRASES)


def extract_action_phrase(reply_text: str) -> str:
    """
    The action the agent is offering to take. Never empty.

    "Would you like me to delete the file?" → "delete the file"
    """
    for pattern in ACTION_PHRASE_PATTERNS:
        match = pattern.search(reply_text)
        if match:
            phrase = match.group(1).strip()
            if phrase:
                return phrase

    for sentence in _SENTENCE_SPLIT.split(reply_text):
        lowered = sentence.lower()
        if any(cue in lowered for cue in SECONDARY_CUES):
            return GENERIC_SUGGESTION

    return GENERIC_ACTION


def truncate_text(text: str, max_length: int) -> str:
    """Cut to max_length characters, appending '...' when something was cut."""
    if not text:
        return ""
    return text[:max_length] + "..." if len(text) > max_length else text
