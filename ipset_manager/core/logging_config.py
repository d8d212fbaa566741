"""
Logging configuration for ipset-manager.

Everything goes to stderr so that exported rule text on stdout stays clean.
"""

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER = "ipset_manager"

# Libraries that are silenced below -vv
NOISY_LOGGERS = ("sqlalchemy", "paramiko", "urllib3", "requests", "httpx", "uvicorn.access")

RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[90m",
    logging.INFO: "\033[94m",
    logging.WARNING: "\033[93m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[1m\033[91m",
}


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name per severity."""

    def format(self, record):
        color = LEVEL_COLORS.get(record.levelno)
        if color:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{RESET}"
        return super().format(record)


def _wants_color(use_colors: bool) -> bool:
    return use_colors and sys.stderr.isatty() and "NO_COLOR" not in os.environ


def setup_logging(verbosity: int = 0, use_colors: bool = True) -> None:
    """
    Configure the root logger for a CLI invocation.

    Args:
        verbosity: Verbosity level (0-2)
            0: warnings and errors only
            1: DEBUG from ipset_manager modules (-v)
            2: DEBUG from everything, SQL statements included (-vv)
        use_colors: Colour level names when stderr is a terminal
    """
    fmt = "%(levelname)s: %(message)s"
    if verbosity >= 2:
        fmt = "%(levelname)s [%(name)s] %(message)s"
    formatter_class = ColoredFormatter if _wants_color(use_colors) else logging.Formatter

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG if verbosity >= 1 else logging.WARNING)
    handler.setFormatter(formatter_class(fmt=fmt))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    if verbosity >= 2:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
        return

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger(ROOT_LOGGER).setLevel(
        logging.DEBUG if verbosity == 1 else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the ipset_manager namespace.

    Args:
        name: Module name (usually __name__)

    Returns:
        Configured logger instance
    """
    if not name.startswith(ROOT_LOGGER):
        if name == "__main__":
            name = f"{ROOT_LOGGER}.cli"
        elif "." not in name:
            name = f"{ROOT_LOGGER}.{name}"

    return logging.getLogger(name)


def log_success(message: str, logger: Optional[logging.Logger] = None) -> None:
    """Log a success message."""
    (logger or get_logger(ROOT_LOGGER)).info(f"✓ {message}")


def log_error(message: str, logger: Optional[logging.Logger] = None) -> None:
    """Log an error message."""
    (logger or get_logger(ROOT_LOGGER)).error(f"✗ {message}")


def log_warning(message: str, logger: Optional[logging.Logger] = None) -> None:
    """Log a warning message."""
    (logger or get_logger(ROOT_LOGGER)).warning(f"⚠ {message}")
