"""
tests/unit/test_logger.py — Structured Logger Tests

Checks that setup_logging() writes JSON lines to parley.log, carries the
bound session context, and keeps transport libraries quiet.
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from observability.logger import LOG_FILE_NAME, bind_session, clear_session, get_logger, setup_logging


@pytest.fixture
def log_dir(tmp_path):
    yield tmp_path
    clear_session()
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def _lines(log_dir) -> list[dict]:
    text = (log_dir / LOG_FILE_NAME).read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestSetupLogging:
    def test_json_line_with_session_context(self, log_dir):
        setup_logging(level="INFO", log_dir=log_dir, console_output=False)
        bind_session("session-42", "u1")
        get_logger("tests.logger").info("gateway.invoke.start", prompt_len=12)

        entry = _lines(log_dir)[-1]
        assert entry["event"] == "gateway.invoke.start"
        assert entry["session_id"] == "session-42"
        assert entry["user_id"] == "u1"
        assert entry["prompt_len"] == 12
        assert entry["level"] == "info"

    def test_level_filters_debug(self, log_dir):
        setup_logging(level="WARNING", log_dir=log_dir, console_output=False)
        log = get_logger("tests.logger")
        log.info("ignored.event")
        log.warning("kept.event")
        assert [e["event"] for e in _lines(log_dir)] == ["kept.event"]

    def test_transport_loggers_quieted(self, log_dir):
        setup_logging(level="DEBUG", log_dir=log_dir, console_output=False)
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("websockets").level == logging.WARNING

    def test_unknown_level_defaults_to_info(self, log_dir):
        setup_logging(level="chatty", log_dir=log_dir, console_output=False)
        assert logging.getLogger().level == logging.INFO

    def test_initial_values_bound(self, log_dir):
        setup_logging(log_dir=log_dir, console_output=False)
        get_logger("tests.logger", component="http_api").info("http_api.started")
        assert _lines(log_dir)[-1]["component"] == "http_api"
