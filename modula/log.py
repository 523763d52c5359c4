"""
Logging setup for the kernel and its command-line tool.

Library code only creates loggers (``logging.getLogger(__name__)``); handlers
are installed by the application, or by modctl through configure_logging().
"""

import logging
import sys
from typing import TextIO

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO", stream: TextIO | None = None) -> logging.Logger:
    """
    Attach a stream handler to the "modula" logger.

    Calling it again replaces the handler instead of adding a second one.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR)
        stream: Output stream (stderr by default)

    Returns:
        The configured "modula" logger
    """
    root_logger = logging.getLogger("modula")
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root_logger.handlers):
        if getattr(handler, "_modula_handler", False):
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler._modula_handler = True
    root_logger.addHandler(handler)
    return root_logger
