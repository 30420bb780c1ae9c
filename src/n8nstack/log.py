"""
Leveled, colorized log output for the installer.

Every message goes through the ``n8nstack`` logger. Three extra levels sit
between INFO and WARNING so the stream can tell success, retry and cleanup
lines apart from plain progress lines.
"""

from __future__ import annotations

import logging
import sys

# Color codes for output
BLUE = '\033[1;34m'
GREEN = '\033[1;32m'
YELLOW = '\033[1;33m'
RED = '\033[1;31m'
MAGENTA = '\033[1;35m'
CYAN = '\033[1;36m'
RESET = '\033[0m'

CLEANUP = 21
RETRY = 22
SUCCESS = 25

logging.addLevelName(CLEANUP, 'CLEANUP')
logging.addLevelName(RETRY, 'RETRY')
logging.addLevelName(SUCCESS, 'SUCCESS')

LEVEL_COLORS = {
    logging.DEBUG: BLUE,
    logging.INFO: BLUE,
    CLEANUP: CYAN,
    RETRY: MAGENTA,
    SUCCESS: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: RED,
}

logger = logging.getLogger('n8nstack')


class ColorFormatter(logging.Formatter):
    """Render records as ``[TAG] message`` with an optional color tag."""

    def __init__(self, use_color: bool = True) -> None:
        super().__init__('%(message)s')
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        tag = f"[{record.levelname}]"
        if self.use_color:
            color = LEVEL_COLORS.get(record.levelno, '')
            tag = f"{color}{tag}{RESET}"
        return f"{tag} {message}"


def configure_logging(log_level: str = "INFO", use_color: bool | None = None) -> None:
    """
    Configure the package logger with the specified level.

    Colors are used only when stdout is a terminal unless ``use_color`` says
    otherwise.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    level = level_map.get(str(log_level).upper(), logging.INFO)

    if use_color is None:
        use_color = sys.stdout.isatty()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter(use_color=use_color))

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    logger.debug(f"Logging configured: {str(log_level).upper()}")


def info(msg: str) -> None:
    logger.info(msg)


def success(msg: str) -> None:
    logger.log(SUCCESS, msg)


def warn(msg: str) -> None:
    logger.warning(msg)


def retry(msg: str) -> None:
    logger.log(RETRY, msg)


def cleanup(msg: str) -> None:
    logger.log(CLEANUP, msg)


def error(msg: str) -> None:
    """Log an error. Termination is left to the caller."""
    logger.error(msg)


def debug(msg: str) -> None:
    logger.debug(msg)
