"""
Logging setup for chtop commands.

Modules log through logging.getLogger(__name__). CLI commands call
configure_logging() once; it installs a RichHandler on the "chtop" logger
writing to stderr so stdout stays clean for exported flamegraphs.

Inside the TUI, records go to a BufferHandler instead (see
chtop.tui.buffer) so they show up in the log panel rather than tearing
the live display.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "chtop"


def configure_logging(
    level: str | int = "INFO",
    console: Console | None = None,
    handler: logging.Handler | None = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Replaces any handlers installed by a previous call.

    Args:
        level: Log level name or number
        console: Console for the RichHandler (stderr if None)
        handler: Use this handler instead of a RichHandler

    Returns:
        The configured "chtop" logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)

    if handler is None:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.propagate = False
    return logger
