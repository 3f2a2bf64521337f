"""Tests for logging setup."""

import logging

import pytest

from server.logging_config import get_logger, reset_logging, setup_logging


@pytest.fixture
def log_file(tmp_path):
    reset_logging()
    path = tmp_path / "logs" / "shelfsync.log"
    yield path
    reset_logging()


def test_module_loggers_nest_under_shelfsync():
    assert get_logger("offline.store").name == "shelfsync.offline.store"
    assert get_logger("shelfsync.request").name == "shelfsync.request"


def test_file_log_captures_debug(log_file):
    assert setup_logging("WARNING", log_file=log_file) == log_file

    get_logger("offline.coordinator").debug("Queued bookmark create")
    for handler in logging.getLogger("shelfsync").handlers:
        handler.flush()

    assert "Queued bookmark create" in log_file.read_text(encoding="utf-8")


def test_second_setup_only_changes_console_level(log_file):
    setup_logging("WARNING", log_file=log_file)
    handlers = list(logging.getLogger("shelfsync").handlers)

    setup_logging("DEBUG", log_file=log_file)

    assert logging.getLogger("shelfsync").handlers == handlers
    assert logging.getLogger("httpx").level == logging.WARNING
