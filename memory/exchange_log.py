"""
memory/exchange_log.py — Shared Exchange Log

Process-wide record of completed prompt/result round trips, newest first,
capped at a fixed size (oldest evicted). One asyncio.Lock guards every
mutation so concurrent appends keep both the order and the cap.

No persistence — cleared when the process restarts.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_LOG_SIZE = 50


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Exchange:
    """One recorded prompt/result pair. Immutable once created."""
    prompt: str
    result: str
    timestamp: str = field(default_factory=_utc_now_iso)
    user_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "prompt": self.prompt,
            "result": self.result,
            "timestamp": self.timestamp,
        }
        if self.user_id:
            d["userId"] = self.user_id
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Exchange":
        """
        Build from a client payload. Raises ValueError when prompt or
        result is not a string; a missing timestamp is filled in.
        """
        prompt = d.get("prompt")
        result = d.get("result")
        if not isinstance(prompt, str) or not isinstance(result, str):
            raise ValueError("exchange needs string 'prompt' and 'result'")
        timestamp = d.get("timestamp")
        user_id = d.get("userId", d.get("user_id"))
        return cls(
            prompt=prompt,
            result=result,
            timestamp=timestamp if isinstance(timestamp, str) else _utc_now_iso(),
            user_id=user_id if isinstance(user_id, str) else None,
        )


class ExchangeLog:
    """
    Newest-first, size-capped sequence of Exchanges.

    Usage:
        log = ExchangeLog(max_size=50)
        await log.append(Exchange(prompt="hi", result="hello"))
        latest = await log.recent(3)
    """

    def __init__(self, max_size: int = DEFAULT_LOG_SIZE):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._entries: deque[Exchange] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    async def append(self, exchange: Exchange) -> None:
        """Insert at the front and evict from the back past max_size."""
        async with self._lock:
            self._entries.appendleft(exchange)
            evicted = self._trim_locked(self._max_size)
        if evicted:
            log.debug("exchange_log.evicted", count=evicted, size=self._max_size)

    async def recent(self, n: int) -> list[Exchange]:
        """The n newest exchanges, newest first."""
        async with self._lock:
            return list(self._entries)[:max(n, 0)]

    async def snapshot(self) -> list[Exchange]:
        """Every exchange, newest first."""
        async with self._lock:
            return list(self._entries)

    async def trim(self, max_size: int) -> int:
        """Drop the oldest entries beyond max_size. Returns how many went."""
        async with self._lock:
            return self._trim_locked(max_size)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def _trim_locked(self, max_size: int) -> int:
        evicted = 0
        while len(self._entries) > max(max_size, 0):
            self._entries.pop()
            evicted += 1
        return evicted

    def __len__(self) -> int:
        return len(self._entries)
