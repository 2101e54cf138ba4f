"""
observability/logger.py — Parley Structured Logger

Every Parley module logs through structlog with dotted event names
(`gateway.invoke.fallback`, `orchestrator.confirmed`, ...). Lines go to
`parley.log` as JSON; stdout is optional because the CLI shares the
terminal with the conversation. While AgentGateway.invoke() runs, the
agent session handle and user id ride along on every line.

Usage:
    setup_logging(level="INFO", log_dir="./data/logs")
    log = get_logger(__name__)
    log.info("http_api.started", port=8080)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

LOG_FILE_NAME = "parley.log"

# Transport libraries log every request at INFO.
_TRANSPORT_LOGGERS = ("httpx", "httpcore", "websockets", "asyncio")

_PRE_CHAIN: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _handlers(log_dir: Path, level: int, console: bool,
              max_bytes: int, backup_count: int) -> list[logging.Handler]:
    rotating = logging.handlers.RotatingFileHandler(
        filename=log_dir / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handlers: list[logging.Handler] = [rotating]
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    for h in handlers:
        h.setLevel(level)
    return handlers


def _renderer(json_format: bool):
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Route structlog through stdlib logging into parley.log (and stdout when
    console_output is set). json_format=False gives coloured dev output.
    Safe to call again; handlers from an earlier call are replaced.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handlers = _handlers(log_dir, numeric_level, console_output, max_bytes, backup_count)
    logging.basicConfig(format="%(message)s", level=numeric_level,
                        handlers=handlers, force=True)
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_format),
        ],
        foreign_pre_chain=_PRE_CHAIN,
    )
    for h in handlers:
        h.setFormatter(formatter)


def get_logger(name: str = "parley", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    return logger.bind(**initial_values) if initial_values else logger


def bind_session(session_id: str, user_id: str) -> None:
    """Tag every log line in the current task with the agent session."""
    structlog.contextvars.bind_contextvars(session_id=session_id, user_id=user_id)


def clear_session() -> None:
    structlog.contextvars.clear_contextvars()
