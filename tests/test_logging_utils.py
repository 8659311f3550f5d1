"""Tests for logging setup helpers."""
from __future__ import annotations

import logging
import logging.handlers

import pytest

from hwsentry.logging_utils import TRACE_LEVEL, configure_logging, resolve_log_level


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestResolveLogLevel:
    @pytest.mark.parametrize(
        "verbosity,fallback,expected",
        [
            (0, "INFO", logging.INFO),
            (0, "warning", logging.WARNING),
            (0, "nonsense", logging.INFO),
            (1, "ERROR", logging.DEBUG),
            (2, "ERROR", TRACE_LEVEL),
            (3, "INFO", TRACE_LEVEL),
        ],
    )
    def test_levels(self, verbosity, fallback, expected):
        assert resolve_log_level(verbosity, fallback) == expected


class TestConfigureLogging:
    def test_console_only(self, restore_root_logger):
        configure_logging(logging.DEBUG)

        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert logging.getLevelName(TRACE_LEVEL) == "TRACE"

    def test_rotating_file(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "logs" / "hwsentry.log"

        configure_logging(logging.INFO, log_file, keep_files=1)
        logging.getLogger("hwsentry").info("hello file")

        file_handlers = [
            h
            for h in restore_root_logger.handlers
            if isinstance(h, logging.handlers.TimedRotatingFileHandler)
        ]
        (handler,) = file_handlers
        assert handler.backupCount == 2
        handler.flush()
        assert "hello file" in log_file.read_text(encoding="utf-8")

    def test_trace_method(self, restore_root_logger, caplog):
        configure_logging(TRACE_LEVEL)
        # basicConfig(force=True) dropped the capture handler.
        restore_root_logger.addHandler(caplog.handler)

        logging.getLogger("hwsentry.trace").trace("raw payload %s", "{}")
        logging.getLogger("hwsentry.trace").log(TRACE_LEVEL - 1, "below trace")

        assert "raw payload {}" in caplog.text
        assert "below trace" not in caplog.text
