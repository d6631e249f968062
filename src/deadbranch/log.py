"""Logging configuration for deadbranch."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str = "WARNING") -> None:
    """Configure logging for deadbranch.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logger = logging.getLogger("deadbranch")
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    # Replace handlers from a previous call (the CLI callback runs once per invocation)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    # Log to stderr so command output stays clean
    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(logger.level)
    logger.addHandler(console_handler)

    # Don't propagate to root logger
    logger.propagate = False
