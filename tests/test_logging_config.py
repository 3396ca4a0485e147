"""Tests for logging setup."""

import logging
import tempfile
from pathlib import Path

from scheduled_matching.utils.logging_config import parse_level, setup_logging


def _reset():
    for name in ("scheduled_matching", "apscheduler", "uvicorn", "uvicorn.access"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True


def test_parse_level():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level(logging.WARNING) == logging.WARNING
    assert parse_level("chatty") == logging.INFO


def test_writes_rotating_file_with_thread_name():
    with tempfile.TemporaryDirectory() as tmp:
        try:
            logger = setup_logging(tmp, "DEBUG", max_bytes=1024, backup_count=1)
            logging.getLogger("scheduled_matching.coordinator").info("batch started")
            for handler in logger.handlers:
                handler.flush()

            text = (Path(tmp) / "scheduled_matching.log").read_text(encoding="utf-8")
            assert "[MainThread] scheduled_matching.coordinator: batch started" in text
        finally:
            _reset()


def test_reinit_does_not_stack_handlers():
    try:
        setup_logging(None)
        logger = setup_logging(None, "WARNING")
        assert len(logger.handlers) == 1
        aps = logging.getLogger("apscheduler")
        assert aps.handlers == logger.handlers
        assert aps.level == logging.WARNING
        assert aps.propagate is False
    finally:
        _reset()
