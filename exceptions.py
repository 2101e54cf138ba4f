"""
exceptions.py — Parley Unified Error Hierarchy

All Parley-specific exceptions live here. Every layer of the stack
raises typed subclasses of ParleyError — never bare Exception.

Import from here, not from individual modules:
    from exceptions import PromptValidationError, AgentUnavailableError

Hierarchy:
    ParleyError
    ├── PromptValidationError
    ├── AgentUnavailableError
    │   ├── AgentNotConfiguredError
    │   ├── AgentConnectionError
    │   └── UnrecognizedReplyShapeError
    ├── ConversationError
    │   └── NoPendingActionError
    └── StorageWriteError

Recovery rules:
    PromptValidationError   surfaced to the caller as a 4xx, never retried
    AgentUnavailableError   recovered inside AgentGateway with a fallback reply
    StorageWriteError       logged and swallowed by the store that raised it
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class ParleyError(Exception):
    """Base class for all Parley exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Inbound validation
# ─────────────────────────────────────────────────────────────────────────────

class PromptValidationError(ParleyError):
    """Prompt is missing, not a string, blank, or over the length bound."""

    def __init__(self, message: str, field: str = "prompt") -> None:
        self.field = field
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# Agent service
# ─────────────────────────────────────────────────────────────────────────────

class AgentUnavailableError(ParleyError):
    """Base for every way the external agent service can fail us."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AgentNotConfiguredError(AgentUnavailableError):
    """Base URL, agent id, alias id or API key is missing."""


class AgentConnectionError(AgentUnavailableError):
    """Network failure, timeout, or non-2xx status from the agent service."""


class UnrecognizedReplyShapeError(AgentUnavailableError):
    """Reply carried none of: completion, output.text, text."""

    def __init__(self, keys: Optional[list[str]] = None) -> None:
        self.keys = keys or []
        super().__init__(
            f"Agent reply has no recognised text field (keys: {self.keys})"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Conversation state
# ─────────────────────────────────────────────────────────────────────────────

class ConversationError(ParleyError):
    """Base for conversation state-machine errors."""


class NoPendingActionError(ConversationError):
    """confirm() or cancel() called while nothing awaits confirmation."""


# ─────────────────────────────────────────────────────────────────────────────
# Storage
# ─────────────────────────────────────────────────────────────────────────────

class StorageWriteError(ParleyError):
    """Persisting the exchange log or history cache failed."""


__all__ = [
    "ParleyError",
    "PromptValidationError",
    "AgentUnavailableError",
    "AgentNotConfiguredError",
    "AgentConnectionError",
    "UnrecognizedReplyShapeError",
    "ConversationError",
    "NoPendingActionError",
    "StorageWriteError",
]
