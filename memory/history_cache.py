"""
memory/history_cache.py — Client History Cache

A small on-disk cache of the most recent exchanges for one client, used by
the CLI to restore context between runs. Stored as a JSON object under a
fixed storage key so other keys in the same file are left alone:

    {"promptHistory": [{"prompt": ..., "result": ..., "timestamp": ...}, ...]}

Read failures are logged and treated as an empty cache. Write failures
raise StorageWriteError internally, are logged, and never reach the user.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from exceptions import StorageWriteError
from memory.exchange_log import Exchange
from observability.logger import get_logger

log = get_logger(__name__)

STORAGE_KEY = "promptHistory"
DEFAULT_CACHE_SIZE = 10


class HistoryCache:
    """Newest-first, size-capped list of Exchanges persisted to a JSON file."""

    def __init__(
        self,
        path: str | Path,
        max_size: int = DEFAULT_CACHE_SIZE,
        storage_key: str = STORAGE_KEY,
    ):
        self._path = Path(path).expanduser()
        self._max_size = max_size
        self._key = storage_key

    @property
    def path(self) -> Path:
        return self._path

    # ── Read ──────────────────────────────────────────────────────────────────

    def load(self) -> list[Exchange]:
        """Cached exchanges, newest first. Empty on any read problem."""
        document = self._read_document()
        raw_items = document.get(self._key, [])
        if not isinstance(raw_items, list):
            log.warning("history_cache.bad_shape", path=str(self._path), key=self._key)
            return []

        exchanges: list[Exchange] = []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            try:
                exchanges.append(Exchange.from_dict(item))
            except ValueError:
                log.debug("history_cache.skipped_entry")
        return exchanges[: self._max_size]

    def _read_document(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("history_cache.read_failed", path=str(self._path), error=str(e))
            return {}
        return document if isinstance(document, dict) else {}

    # ── Write ─────────────────────────────────────────────────────────────────

    def add(self, exchange: Exchange) -> list[Exchange]:
        """Put exchange at the front, trim, persist. Returns the new list."""
        history = [exchange] + self.load()
        history = history[: self._max_size]
        self.save(history)
        return history

    def save(self, history: list[Exchange]) -> bool:
        """Persist history. Returns False (after logging) when the write failed."""
        try:
            self._write(history[: self._max_size])
            return True
        except StorageWriteError as e:
            log.error("history_cache.write_failed", path=str(self._path), error=str(e))
            return False

    def clear(self) -> bool:
        return self.save([])

    def _write(self, history: list[Exchange]) -> None:
        document = self._read_document()
        document[self._key] = [e.to_dict() for e in history]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(document, indent=2), encoding="utf-8")
            tmp.replace(self._path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageWriteError(f"Could not write {self._path}: {e}") from e
