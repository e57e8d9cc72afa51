"""Tests for structured logging setup."""

from __future__ import annotations

import io
import json
import logging

import structlog

from lockmarket_core.logging import get_logger, setup_logging


class TestSetupLogging:
    def test_json_format(self, capsys):
        setup_logging(level="INFO", log_format="json")
        logger = get_logger("test_json")
        logger.info("event_applied", token_id=101)

        captured = capsys.readouterr()
        line = json.loads(captured.err.strip())
        assert line["event"] == "event_applied"
        assert line["token_id"] == 101
        assert line["level"] == "info"
        assert "timestamp" in line

    def test_console_format(self, capsys):
        setup_logging(level="INFO", log_format="console")
        logger = get_logger("test_console")
        logger.info("hello console", block_number=42)

        captured = capsys.readouterr()
        assert "hello console" in captured.err
        assert "42" in captured.err

    def test_log_level_filtering(self, capsys):
        setup_logging(level="WARNING", log_format="json")
        logger = get_logger("test_level")
        logger.info("should be hidden")
        logger.warning("should appear")

        captured = capsys.readouterr()
        assert "should be hidden" not in captured.err
        assert "should appear" in captured.err

    def test_get_logger_with_context(self, capsys):
        setup_logging(level="INFO", log_format="json")
        logger = get_logger("test_ctx", token_id=7, tx_hash="0xabc")
        logger.info("context test")

        captured = capsys.readouterr()
        line = json.loads(captured.err.strip())
        assert line["token_id"] == 7
        assert line["tx_hash"] == "0xabc"

    def test_explicit_stream(self):
        stream = io.StringIO()
        setup_logging(level="INFO", log_format="json", stream=stream)
        get_logger("test_stream").info("to stream")
        assert json.loads(stream.getvalue().strip())["event"] == "to stream"

    def test_stdlib_logging_is_rendered(self):
        stream = io.StringIO()
        setup_logging(level="INFO", log_format="json", stream=stream)
        logging.getLogger("some.library").warning("plain stdlib")
        line = json.loads(stream.getvalue().strip())
        assert line["event"] == "plain stdlib"
        assert line["logger"] == "some.library"

    def test_noisy_loggers_quieted(self):
        setup_logging(level="DEBUG", log_format="json")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("web3").level == logging.WARNING

    def test_contextvars_binding(self, capsys):
        setup_logging(level="INFO", log_format="json")
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(cursor="marketplace")

        get_logger("test_ctxvars").info("bound")
        line = json.loads(capsys.readouterr().err.strip())
        assert line["cursor"] == "marketplace"
        structlog.contextvars.clear_contextvars()
