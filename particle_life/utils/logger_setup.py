"""
Logging configuration for the particle-life engine.

Every module logs through the dedicated ``particle_life`` logger (never the
root logger) with a short ``[subsystem]`` prefix in the message, e.g.
``[clock] physics backlog ...``.
"""

from __future__ import annotations

import logging
from pathlib import Path

LOGGER_NAME = "particle_life"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def setup_logging(
    level: str | int = "INFO",
    *,
    log_file: str | Path | None = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Configure the application logger.

    Output goes to stderr and, when ``log_file`` is given, to that file (its
    parent directory is created). Calling this again replaces the handlers
    instead of stacking duplicates.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    formatter = logging.Formatter(fmt)

    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("[log] logging initialized (level=%s, file=%s)", logging.getLevelName(logger.level), log_file)
    return logger
