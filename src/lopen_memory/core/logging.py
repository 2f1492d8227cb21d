"""
Logging configuration.

Diagnostics go to stderr so stdout stays clean for command output,
including JSON. Quiet by default; ``--debug`` or LOPEN_MEMORY_LOG_LEVEL
turns it up.
"""

import logging
import sys
from pathlib import Path

LOGGER_NAME = "lopen_memory"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def resolve_level(name: str | int | None, debug: bool = False) -> int:
    """Numeric level from a level name; ``debug`` always wins."""
    if debug:
        return logging.DEBUG
    if isinstance(name, int):
        return name
    level = logging.getLevelName((name or "WARNING").upper())
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(
    level: int | str = logging.WARNING,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure the package logger: stderr console plus optional file.

    Safe to call once per command; existing handlers are replaced.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolve_level(level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Child logger under the package logger, e.g. ``memory.store``."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
