"""
Logging setup for the lattice worker and runner scripts.

Engine modules log through logging.getLogger(__name__); this helper only
wires handlers for a process entry point.
"""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    name: str, log_file: Optional[Path] = None, level=logging.INFO
) -> logging.Logger:
    """
    Setup a logger with a console handler and an optional file handler.

    Args:
        name: Logger name ("" configures the root logger)
        log_file: Optional path to a log file (parent dirs are created)
        level: Logging level

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear any existing handlers
    logger.handlers = []

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # Console handler (stderr, stdout may carry protocol traffic)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="w")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
