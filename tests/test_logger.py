"""Tests for logger module."""

import logging
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

from interchat.util.logger import (
    DATE_FORMAT,
    LOG_BACKUP_COUNT,
    LOG_COLORS,
    LOG_FORMAT,
    LOG_MAX_BYTES,
    ColorFormatter,
    PromptToolkitHandler,
    get_logger,
    handle_exception,
    should_use_color,
)


def make_record(level=logging.INFO, msg="Relay message"):
    return logging.LogRecord(
        name="test", level=level, pathname="test.py", lineno=10,
        msg=msg, args=(), exc_info=None, func="test_func",
    )


class TestShouldUseColor:
    @patch("sys.stderr.isatty")
    def test_tty(self, mock_isatty):
        mock_isatty.return_value = True
        assert should_use_color() is True

    @patch("sys.stderr.isatty")
    def test_exception_means_no_color(self, mock_isatty):
        mock_isatty.side_effect = Exception("Error")
        assert should_use_color() is False


class TestColorFormatter:
    def test_wraps_in_level_color(self):
        formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        formatted = formatter.format(make_record(logging.WARNING))
        assert formatted.startswith(LOG_COLORS["WARNING"])
        assert "Relay message" in formatted

    def test_unknown_level_left_plain(self):
        formatter = ColorFormatter("%(message)s")
        record = make_record()
        record.levelname = "TRACE"
        assert formatter.format(record) == "Relay message"


class TestGetLogger:
    def test_handlers_configured_once(self):
        logger = get_logger("test_logger_handlers")
        again = get_logger("test_logger_handlers")

        assert logger is again
        assert len(logger.handlers) == 2
        assert not logger.propagate

    def test_file_handler_rotates(self):
        logger = get_logger("test_logger_rotation")
        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]

        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == LOG_MAX_BYTES
        assert file_handlers[0].backupCount == LOG_BACKUP_COUNT

    def test_console_handler_prints_through_prompt_toolkit(self):
        handler = PromptToolkitHandler(formatter=logging.Formatter("%(message)s"))
        with patch("interchat.util.logger.print_formatted_text") as mock_print:
            handler.emit(make_record())
        mock_print.assert_called_once()


class TestHandleException:
    def test_keyboard_interrupt_goes_to_default_hook(self):
        with patch("sys.__excepthook__") as default_hook:
            handle_exception(KeyboardInterrupt, KeyboardInterrupt(), None)
        default_hook.assert_called_once()

    def test_other_exceptions_logged(self):
        with patch("interchat.util.logger.logging.error") as log_error:
            handle_exception(ValueError, ValueError("x"), None)
        log_error.assert_called_once()
