"""
gateway/validation.py — Inbound Payload Validation

Shared by the HTTP API, the WebSocket gateway and the CLI so every surface
rejects the same prompts with the same messages, before any agent call.
"""

from __future__ import annotations

from typing import Any

from exceptions import PromptValidationError
from memory.exchange_log import Exchange
from observability.logger import get_logger

log = get_logger(__name__)

MAX_PROMPT_LENGTH = 1000


def validate_prompt(prompt: Any, max_length: int = MAX_PROMPT_LENGTH) -> str:
    """
    Return the trimmed prompt or raise PromptValidationError.

    Rejects: missing/None, non-string, blank, longer than max_length.
    """
    if prompt is None:
        raise PromptValidationError("Prompt is required")
    if not isinstance(prompt, str):
        raise PromptValidationError("Prompt must be a string")
    prompt = prompt.strip()
    if not prompt:
        raise PromptValidationError("Prompt is required")
    if len(prompt) > max_length:
        raise PromptValidationError(
            f"Prompt is too long (maximum {max_length} characters)"
        )
    return prompt


def coerce_history(raw: Any, max_items: int = 10) -> list[Exchange]:
    """
    Client-supplied history → Exchanges, newest first.

    Malformed entries are dropped rather than failing the request; the
    history only adds context and is never required.
    """
    if not isinstance(raw, list):
        if raw is not None:
            log.debug("validation.history_not_list", type=type(raw).__name__)
        return []

    history: list[Exchange] = []
    dropped = 0
    for item in raw:
        if len(history) >= max_items:
            break
        if not isinstance(item, dict):
            dropped += 1
            continue
        try:
            history.append(Exchange.from_dict(item))
        except ValueError:
            dropped += 1
    if dropped:
        log.debug("validation.history_dropped", dropped=dropped)
    return history
