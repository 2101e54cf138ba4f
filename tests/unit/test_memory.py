"""
tests/unit/test_memory.py — Exchange Log & History Cache Tests

Covers:
  - Exchange serialisation (userId key, from_dict validation)
  - ExchangeLog: newest first, eviction past max_size, recent(n), trim, clear
  - HistoryCache: load/add/save/clear, corrupt files, foreign keys preserved,
    write failures swallowed
"""

from __future__ import annotations

import json

import pytest

from memory.exchange_log import Exchange, ExchangeLog
from memory.history_cache import STORAGE_KEY, HistoryCache


# ─────────────────────────────────────────────────────────────────────────────
# Exchange
# ─────────────────────────────────────────────────────────────────────────────

class TestExchange:
    def test_to_dict_uses_user_id_key(self):
        d = Exchange(prompt="p", result="r", user_id="u1").to_dict()
        assert d["userId"] == "u1"
        assert d["prompt"] == "p"
        assert "timestamp" in d

    def test_to_dict_omits_missing_user(self):
        assert "userId" not in Exchange(prompt="p", result="r").to_dict()

    def test_from_dict_fills_timestamp(self):
        ex = Exchange.from_dict({"prompt": "p", "result": "r"})
        assert ex.timestamp

    def test_from_dict_rejects_non_strings(self):
        with pytest.raises(ValueError):
            Exchange.from_dict({"prompt": 1, "result": "r"})
        with pytest.raises(ValueError):
            Exchange.from_dict({"prompt": "p"})

    def test_frozen(self):
        ex = Exchange(prompt="p", result="r")
        with pytest.raises(AttributeError):
            ex.prompt = "changed"  # type: ignore[misc]


# ─────────────────────────────────────────────────────────────────────────────
# ExchangeLog
# ─────────────────────────────────────────────────────────────────────────────

class TestExchangeLog:
    @pytest.mark.asyncio
    async def test_keeps_fifty_newest_first(self):
        log = ExchangeLog(max_size=50)
        for i in range(55):
            await log.append(Exchange(prompt=f"p{i}", result=f"r{i}"))
        entries = await log.snapshot()
        assert len(entries) == 50
        assert len(log) == 50
        assert entries[0].prompt == "p54"
        assert entries[-1].prompt == "p5"

    @pytest.mark.asyncio
    async def test_recent(self):
        log = ExchangeLog()
        for i in range(5):
            await log.append(Exchange(prompt=f"p{i}", result="r"))
        recent = await log.recent(3)
        assert [e.prompt for e in recent] == ["p4", "p3", "p2"]

    @pytest.mark.asyncio
    async def test_trim_and_clear(self):
        log = ExchangeLog()
        for i in range(10):
            await log.append(Exchange(prompt=f"p{i}", result="r"))
        await log.trim(4)
        assert [e.prompt for e in await log.snapshot()] == ["p9", "p8", "p7", "p6"]
        await log.clear()
        assert len(log) == 0

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self):
        log = ExchangeLog()
        await log.append(Exchange(prompt="p", result="r"))
        snap = await log.snapshot()
        snap.clear()
        assert len(log) == 1

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            ExchangeLog(max_size=0)


# ─────────────────────────────────────────────────────────────────────────────
# HistoryCache
# ─────────────────────────────────────────────────────────────────────────────

class TestHistoryCache:
    def test_missing_file_is_empty(self, tmp_path):
        assert HistoryCache(tmp_path / "h.json").load() == []

    def test_add_puts_newest_first_and_caps(self, tmp_path):
        cache = HistoryCache(tmp_path / "h.json", max_size=3)
        for i in range(5):
            cache.add(Exchange(prompt=f"p{i}", result="r"))
        loaded = cache.load()
        assert [e.prompt for e in loaded] == ["p4", "p3", "p2"]

    def test_persists_under_storage_key(self, tmp_path):
        path = tmp_path / "h.json"
        HistoryCache(path).add(Exchange(prompt="p", result="r"))
        document = json.loads(path.read_text())
        assert document[STORAGE_KEY][0]["prompt"] == "p"

    def test_foreign_keys_preserved(self, tmp_path):
        path = tmp_path / "h.json"
        path.write_text(json.dumps({"theme": "dark"}))
        HistoryCache(path).add(Exchange(prompt="p", result="r"))
        assert json.loads(path.read_text())["theme"] == "dark"

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "h.json"
        path.write_text("{not json")
        assert HistoryCache(path).load() == []

    def test_bad_entries_skipped(self, tmp_path):
        path = tmp_path / "h.json"
        path.write_text(json.dumps({STORAGE_KEY: [
            {"prompt": "ok", "result": "fine"},
            {"prompt": 3},
            "junk",
        ]}))
        assert [e.prompt for e in HistoryCache(path).load()] == ["ok"]

    def test_write_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        cache = HistoryCache(blocker / "h.json")
        assert cache.save([Exchange(prompt="p", result="r")]) is False
        cache.add(Exchange(prompt="p", result="r"))  # must not raise

    def test_clear(self, tmp_path):
        cache = HistoryCache(tmp_path / "h.json")
        cache.add(Exchange(prompt="p", result="r"))
        assert cache.clear() is True
        assert cache.load() == []
