#!/usr/bin/env python3
"""
Logging helper tests.
"""

import logging
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from n8nstack import log  # noqa: E402


@pytest.fixture(autouse=True)
def restore_logger():
    handlers, level, propagate = list(log.logger.handlers), log.logger.level, log.logger.propagate
    yield
    log.logger.handlers[:] = handlers
    log.logger.setLevel(level)
    log.logger.propagate = propagate


def _record(level, msg):
    return logging.LogRecord("n8nstack", level, __file__, 1, msg, None, None)


class TestColorFormatter:
    def test_plain_tags(self):
        formatter = log.ColorFormatter(use_color=False)

        assert formatter.format(_record(log.SUCCESS, "done")) == "[SUCCESS] done"
        assert formatter.format(_record(log.RETRY, "again")) == "[RETRY] again"
        assert formatter.format(_record(logging.WARNING, "careful")) == "[WARNING] careful"

    def test_colored_tags(self):
        line = log.ColorFormatter(use_color=True).format(_record(logging.ERROR, "broken"))

        assert line == f"{log.RED}[ERROR]{log.RESET} broken"


class TestConfigureLogging:
    def test_single_handler_and_level(self, capsys):
        log.configure_logging("WARNING", use_color=False)
        log.configure_logging("DEBUG", use_color=False)

        assert len(log.logger.handlers) == 1
        assert log.logger.level == logging.DEBUG

        log.cleanup("removing n8n")
        log.success("installed")
        out = capsys.readouterr().out
        assert "[CLEANUP] removing n8n" in out
        assert "[SUCCESS] installed" in out

    def test_unknown_level_defaults_to_info(self, capsys):
        log.configure_logging("LOUD", use_color=False)

        assert log.logger.level == logging.INFO
        log.debug("hidden")
        log.info("shown")
        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "[INFO] shown" in out
