"""
safety/__init__.py — Parley Confirmation Policies
"""

from safety.confirmation_policy import (
    ConfirmationPolicy,
    NoConfirmationPolicy,
    PendingAction,
    PromptPrecheckPolicy,
    ReplyDrivenPolicy,
    create_policy,
)

__all__ = [
    "ConfirmationPolicy",
    "NoConfirmationPolicy",
    "PendingAction",
    "PromptPrecheckPolicy",
    "ReplyDrivenPolicy",
    "create_policy",
]
