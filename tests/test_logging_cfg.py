"""Tests for logging setup."""

import logging
import logging.handlers

import pytest

from gmail_slack_forwarder.logging_cfg import setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def test_console_only(root_logger):
    setup_logging("DEBUG")
    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert logging.getLogger("googleapiclient.discovery").level == logging.WARNING


def test_rotating_file(root_logger, tmp_path):
    log_file = tmp_path / "logs" / "forwarder.log"
    setup_logging("INFO", log_file)

    file_handlers = [
        h for h in root_logger.handlers
        if isinstance(h, logging.handlers.RotatingFileHandler)
    ]
    assert len(file_handlers) == 1

    logging.getLogger("gmail_slack_forwarder.test").info("hello file")
    file_handlers[0].flush()
    assert "hello file" in log_file.read_text()
