"""Tests for logging module."""

import logging
import logging.handlers
from pathlib import Path

from matrix_identity_store.logger import get_logger, setup_logging


def test_setup_logging(test_settings):
    """Test logging setup creates handlers correctly."""
    setup_logging(test_settings)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG

    # Should have console and file handlers
    assert len(root_logger.handlers) == 2
    handlers = {type(h) for h in root_logger.handlers}
    assert logging.StreamHandler in handlers
    assert logging.handlers.RotatingFileHandler in handlers

    # Log file should be created
    log_file = Path(test_settings.logging.file_path)
    assert log_file.exists()


def test_setup_logging_twice_replaces_handlers(test_settings):
    setup_logging(test_settings)
    setup_logging(test_settings)
    assert len(logging.getLogger().handlers) == 2


def test_get_logger():
    """Test logger creation with correct name."""
    logger = get_logger("test_module")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "test_module"


def test_logging_levels(test_settings):
    """Test different logging levels."""
    test_settings.logging.level = "DEBUG"
    setup_logging(test_settings)
    logger = get_logger("test_levels")

    assert logger.getEffectiveLevel() == logging.DEBUG

    test_settings.logging.level = "ERROR"
    setup_logging(test_settings)
    assert logger.getEffectiveLevel() == logging.ERROR


def test_log_records_reach_file(test_settings):
    setup_logging(test_settings)
    get_logger("test_file").warning("stored to disk")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "stored to disk" in Path(test_settings.logging.file_path).read_text()
