"""
gateway/session_store.py — Agent Session Registry

Maps each user id to the opaque session handle the agent service uses to
thread independent calls into one conversation. A handle is minted on a
user's first prompt and reused for the lifetime of the process; bindings
are never removed, so a long-running deployment would need TTL eviction.

Uses one asyncio.Lock as the single mutation point for all bindings.

Anonymous traffic: when a request carries neither a user id nor a remote
address, it resolves to the shared "anonymous" id, so every such caller
lands in the SAME agent session. That is accepted for low-context use and
logged at WARNING each time it happens.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from observability.logger import get_logger

log = get_logger(__name__)

ANONYMOUS_USER = "anonymous"


def resolve_user_id(user_id: Optional[str] = None, remote_addr: Optional[str] = None) -> str:
    """Caller-supplied id, else request source address, else 'anonymous'."""
    if isinstance(user_id, str) and user_id.strip():
        return user_id.strip()
    if isinstance(remote_addr, str) and remote_addr.strip():
        return remote_addr.strip()
    log.warning("session_registry.anonymous_shared_session")
    return ANONYMOUS_USER


class SessionRegistry:
    """
    Async-safe user id → session handle registry.

    Handles are monotonic-time based: unique, not unpredictable.
    """

    def __init__(self, prefix: str = "session"):
        self._bindings: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._prefix = prefix
        self._last_stamp = 0

    async def resolve(self, user_id: str) -> str:
        """Return the user's handle, minting and storing one on first contact."""
        async with self._lock:
            handle = self._bindings.get(user_id)
            if handle is not None:
                return handle
            handle = self._mint_locked()
            self._bindings[user_id] = handle
        log.info("session_registry.created", user_id=user_id, session_id=handle)
        return handle

    async def get(self, user_id: str) -> Optional[str]:
        """The existing handle, or None. Never creates."""
        async with self._lock:
            return self._bindings.get(user_id)

    async def bindings(self) -> dict[str, str]:
        """Copy of every user id → handle binding."""
        async with self._lock:
            return dict(self._bindings)

    async def get_count(self) -> int:
        async with self._lock:
            return len(self._bindings)

    @property
    def count(self) -> int:
        """Synchronous count for non-async callers."""
        return len(self._bindings)

    def _mint_locked(self) -> str:
        stamp = time.monotonic_ns()
        if stamp <= self._last_stamp:
            stamp = self._last_stamp + 1
        self._last_stamp = stamp
        return f"{self._prefix}-{stamp}"
