"""Logging setup shared by the evaluation scripts.

Library modules only create module loggers with ``logging.getLogger(__name__)``;
handlers are attached here, once, by the script that runs the evaluation.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logger(
    name: str,
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    package_loggers: Iterable[str] = ('src',),
) -> logging.Logger:
    """Configure a script logger with console and optional file output.

    The same handlers are attached to the package loggers so that messages
    from ``src.*`` modules (per-utterance transcripts, skipped utterances)
    end up in the same console and log file as the script's own messages.

    Args:
        name: Name of the script logger
        log_file: Optional path to a log file; parent directories are created
        level: Logging level (e.g., logging.INFO, logging.DEBUG)
        format_string: Optional custom format string
        package_loggers: Names of library loggers sharing the handlers

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logger('evaluate', 'logs/evaluate.log')
        >>> logger.info("Evaluation started")
        2026-03-02 10:30:45 - INFO - evaluate - Evaluation started
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Already configured
    if logger.handlers:
        return logger

    formatter = logging.Formatter(format_string or DEFAULT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    handlers = []
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, mode='a')
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for target in [logger] + [logging.getLogger(package) for package in package_loggers]:
        target.setLevel(level)
        for handler in handlers:
            handler.setLevel(level)
            target.addHandler(handler)

    return logger


def set_log_level(logger: logging.Logger, level: int, package_loggers: Iterable[str] = ('src',)) -> None:
    """Change the level of a configured logger, its handlers and the package loggers."""
    for target in [logger] + [logging.getLogger(package) for package in package_loggers]:
        target.setLevel(level)
        for handler in target.handlers:
            handler.setLevel(level)
