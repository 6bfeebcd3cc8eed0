"""Logging for docctx.

Console records go through rich on stderr so they never mix with JSON or
context text written to stdout. The optional log file always records
DEBUG, which includes every phase decision the builder makes.
"""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "docctx"


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None
) -> logging.Logger:
    """Configure the docctx logger.

    Args:
        verbose: Show DEBUG records (phase decisions, cache hits)
        quiet: Only show ERROR and above
        log_file: Optional file that receives DEBUG records

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
    logger.setLevel(logging.DEBUG if verbose or log_file else logging.INFO)

    if quiet:
        console_level = logging.ERROR
    elif verbose:
        console_level = logging.DEBUG
    else:
        console_level = logging.INFO

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=verbose,
        show_level=verbose,
        markup=False,
    )
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
        logger.addHandler(file_handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the docctx logger instance."""
    return logging.getLogger(LOGGER_NAME)
