"""Tests for logger module."""

import logging
from unittest.mock import patch

import pytest

from modsbot.util.logger import (
    ColorFormatter,
    DATE_FORMAT,
    LOG_FORMAT,
    NOISY_LOGGERS,
    PromptToolkitHandler,
    get_logger,
    resolve_level,
    set_console_level,
    setup_logger,
    should_use_color,
)


def _record(level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
        func="test_func",
    )


class TestShouldUseColor:
    """Tests for should_use_color function."""

    @patch('sys.stderr.isatty')
    def test_should_use_color_tty(self, mock_isatty):
        mock_isatty.return_value = True
        assert should_use_color() is True

    @patch('sys.stderr.isatty')
    def test_should_use_color_no_tty(self, mock_isatty):
        mock_isatty.return_value = False
        assert should_use_color() is False

    @patch('sys.stderr.isatty')
    def test_should_use_color_exception(self, mock_isatty):
        mock_isatty.side_effect = Exception("Error")
        assert should_use_color() is False


class TestColorFormatter:
    """Tests for ColorFormatter class."""

    def test_debug_is_cyan(self):
        formatted = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT).format(_record(logging.DEBUG, "Debug message"))
        assert formatted.startswith("\033[36m")
        assert "Debug message" in formatted

    def test_error_is_red(self):
        formatted = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT).format(_record(logging.ERROR, "Error message"))
        assert formatted.startswith("\033[31m")
        assert formatted.endswith("\033[0m")

    def test_format_includes_location(self):
        formatted = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT).format(_record(logging.WARNING, "Warning message"))
        assert "[WARNING]" in formatted
        assert "[test:test_func:10]" in formatted


class TestSetupLogger:
    """Tests for setup_logger function."""

    def test_setup_logger_namespaces_name(self):
        logger = setup_logger("test_logger_unique_1")

        assert logger.name == "modsbot.test_logger_unique_1"
        assert logger.level == logging.DEBUG

    def test_setup_logger_returns_existing(self):
        logger1 = setup_logger("test_logger_unique_2")
        logger2 = setup_logger("test_logger_unique_2")

        assert logger1 is logger2
        assert len(logger1.handlers) == 2

    def test_setup_logger_propagate_false(self):
        assert setup_logger("test_logger_unique_3").propagate is False


class TestLevels:
    def test_resolve_level_by_name(self):
        assert resolve_level("warning") == logging.WARNING
        assert resolve_level(logging.DEBUG) == logging.DEBUG

    def test_resolve_level_unknown_raises(self):
        with pytest.raises(ValueError):
            resolve_level("chatty")

    def test_set_console_level_updates_console_handlers(self):
        logger = get_logger("test_console_level")
        try:
            set_console_level("ERROR")
            console = [h for h in logger.handlers if isinstance(h, PromptToolkitHandler)]
            assert console and all(h.level == logging.ERROR for h in console)
        finally:
            set_console_level("INFO")

    def test_noisy_libraries_are_clamped(self):
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.ERROR


class TestLoggerIntegration:
    """Integration tests for logger functionality."""

    def test_logger_with_exception(self):
        logger = get_logger("test_integration_exception")

        try:
            raise ValueError("Test exception")
        except ValueError:
            logger.exception("Exception occurred")

    def test_logger_multiple_loggers(self):
        logger1 = get_logger("module1")
        logger2 = get_logger("module2")

        assert logger1.name == "modsbot.module1"
        assert logger1 is not logger2
