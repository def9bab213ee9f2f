"""
Logging infrastructure for the annotator.

Every module of the package logs through a child of the ``lua_annotator``
logger. Console output uses a short format; an optional rotating log file
receives the detailed format with source locations.

Examples:
    >>> from lua_annotator.utils.logger import setup_logger
    >>> logger = setup_logger("lua_annotator", level="DEBUG", log_file=Path("logs/annotator.log"))
    >>> logger.info("Annotating 12 files")
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from .path_utils import ensure_directory

# Root logger name shared by every module of the package
ROOT_LOGGER_NAME = "lua_annotator"

# Valid log levels
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Default log format strings
DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
SIMPLE_FORMAT = "%(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Rotation policy for file logs
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def _check_level(level: str) -> int:
    if level.upper() not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of {VALID_LOG_LEVELS}")
    return getattr(logging, level.upper())


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str = "INFO",
    log_file: Path | None = None
) -> logging.Logger:
    """
    Configure and return a logger instance.

    Creates a logger with console output and optional file output.
    Calling it again for the same name does not add duplicate handlers.

    Args:
        name: Logger name (usually "lua_annotator").
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to log file. If provided, enables file logging.

    Returns:
        Configured logger instance.

    Raises:
        ValueError: If level is not a valid log level.
    """
    numeric_level = _check_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    has_console_handler = any(
        isinstance(h, logging.StreamHandler)
        and not isinstance(h, logging.handlers.RotatingFileHandler)
        for h in logger.handlers
    )
    has_file_handler = any(isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers)

    if not has_console_handler:
        add_console_handler(logger, level)

    if log_file is not None and not has_file_handler:
        add_file_handler(logger, log_file, level="DEBUG")

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Retrieve existing logger or create default logger.

    Child loggers such as ``lua_annotator.core.orchestrator`` propagate to
    the package logger, so a handler is only attached when nothing up the
    hierarchy (including the root logger) has one.

    Args:
        name: Logger name.

    Returns:
        Logger instance.
    """
    logger = logging.getLogger(name)

    if logger.hasHandlers():
        return logger

    parent_name = name.rsplit(".", 1)[0] if "." in name else ""
    while parent_name:
        if logging.getLogger(parent_name).handlers:
            return logger
        parent_name = parent_name.rsplit(".", 1)[0] if "." in parent_name else ""

    if logging.getLogger().handlers:
        return logger

    return setup_logger(name)


def set_log_level(logger: logging.Logger, level: str) -> None:
    """
    Change logging level dynamically.

    Raises:
        ValueError: If level is not valid.
    """
    logger.setLevel(_check_level(level))


def add_file_handler(
    logger: logging.Logger,
    log_file: Path,
    level: str = "DEBUG"
) -> None:
    """
    Add a rotating file handler (10MB, 5 backups) to logger.

    Creates the log directory if it doesn't exist.

    Raises:
        ValueError: If level is not valid.
        OSError: If log directory cannot be created.
    """
    numeric_level = _check_level(level)

    ensure_directory(log_file.parent)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8"
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(file_handler)


def add_console_handler(logger: logging.Logger, level: str = "INFO") -> None:
    """
    Add console output handler to logger.

    Raises:
        ValueError: If level is not valid.
    """
    numeric_level = _check_level(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))

    logger.addHandler(console_handler)
