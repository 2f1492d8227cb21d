"""Tests for logging setup."""

import logging
import sys

from lopen_memory.core.logging import get_logger, resolve_level, setup_logging


def test_resolve_level():
    assert resolve_level("info") == logging.INFO
    assert resolve_level(None) == logging.WARNING
    assert resolve_level("nonsense") == logging.WARNING
    assert resolve_level("ERROR", debug=True) == logging.DEBUG


def test_setup_logging_replaces_handlers(tmp_path):
    """Repeated setup leaves one console handler on stderr."""
    setup_logging("INFO")
    logger = setup_logging("DEBUG", log_file=tmp_path / "logs" / "memory.log")

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    assert logger.handlers[0].stream is sys.stderr
    assert (tmp_path / "logs" / "memory.log").exists()
    assert get_logger("memory.store").name == "lopen_memory.memory.store"

    setup_logging()
