"""
Logging Utilities

This module sets up logging for the project and provides a progress
callback factory that reports operation progress through a logger.
"""

import logging
import sys
from pathlib import Path
from typing import Callable, Optional


def setup_logger(name: str,
                 level: int = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger


def logging_progress(logger: logging.Logger,
                     level: int = logging.INFO,
                     step: float = 0.1) -> Callable[[float, str], bool]:
    """
    Create a progress callback that logs every `step` fraction of completion.

    The callback never requests cancellation. Messages are logged when the
    message changes or when progress advanced by at least `step`.

    Args:
        logger: Target logger
        level: Logging level for progress lines
        step: Minimum completion delta between two log lines

    Returns:
        Callback with signature (complete, message) -> True
    """
    state = {"last": -1.0, "message": None}

    def _progress(complete: float, message: str) -> bool:
        if message != state["message"] or complete >= 1.0 or complete - state["last"] >= step:
            logger.log(level, f"{message} ({100 * complete:.0f}%)")
            state["last"] = complete
            state["message"] = message
        return True

    return _progress
