"""
Logging configuration for the release notes parser.
"""

import logging
import sys
from typing import Optional


def setup_logger(
    name: str = "release_parser",
    level: int = logging.INFO,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up and return the package logger.

    Calling it again with a different level only adjusts the level, so the
    CLI can switch to DEBUG after modules have already logged at import.

    Args:
        name: Logger name
        level: Logging level (default: INFO)
        log_file: Optional file path for logging

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Progress goes to stderr; stdout is left free for JSON output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


logger = setup_logger()


def get_module_logger(module_name: str) -> logging.Logger:
    """
    Get a child logger for a specific module, e.g. "release_parser.segmenter".

    Args:
        module_name: Name of the module (e.g., 'segmenter', 'analyzer')

    Returns:
        Child logger instance
    """
    return logging.getLogger(f"release_parser.{module_name}")
