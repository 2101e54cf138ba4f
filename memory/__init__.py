"""
memory/__init__.py — Parley Exchange Storage

Usage:
    from memory import ExchangeLog, HistoryCache

    log = ExchangeLog(max_size=50)
    await log.append(Exchange(prompt="hi", result="hello"))
"""

from memory.exchange_log import Exchange, ExchangeLog
from memory.history_cache import HistoryCache

__all__ = [
    "Exchange",
    "ExchangeLog",
    "HistoryCache",
]
