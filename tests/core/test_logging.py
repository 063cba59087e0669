"""Tests for fanmap.core.logging."""

import json
import logging

import structlog

from fanmap.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


class TestLogContext:
    def test_binds_and_unbinds(self):
        with LogContext(run_id="abc"):
            assert structlog.contextvars.get_contextvars()["run_id"] == "abc"
        assert "run_id" not in structlog.contextvars.get_contextvars()

    def test_bind_unbind_clear(self):
        bind_context(a=1, b=2)
        unbind_context("a")
        assert structlog.contextvars.get_contextvars() == {"b": 2}
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestConfigureLogging:
    def test_json_output_carries_context_and_service(self, capsys):
        configure_logging(level="INFO", json_format=True, service="fanmap-test")
        logger = get_logger("tests.logging")
        with LogContext(run_id="r1"):
            logger.info("engine.run_started", items=3)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "engine.run_started"
        assert record["items"] == 3
        assert record["run_id"] == "r1"
        assert record["service"] == "fanmap-test"
        assert record["level"] == "info"
        assert record["logger"] == "tests.logging"

    def test_level_filters_debug(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        logger = get_logger("tests.logging.level")
        logger.info("dropped")
        logger.warning("kept")
        err = capsys.readouterr().err
        assert "dropped" not in err
        assert "kept" in err
        assert logging.getLogger().level == logging.WARNING
