"""
Logging configuration and setup.

Provides console and file logging for the ``ledgerbot`` logger tree.
"""

import logging
import sys
from pathlib import Path

from ledgerbot.config.settings import Settings


class ColoredFormatter(logging.Formatter):
    """Formatter that adds color to console output."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with color."""
        if record.levelname in self.COLORS:
            record.levelname = (
                f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
            )
        return super().format(record)


def setup_logging(settings: Settings) -> None:
    """
    Configure logging based on settings.

    Args:
        settings: Application settings containing log configuration
    """
    root_logger = logging.getLogger("ledgerbot")
    root_logger.setLevel(getattr(logging, settings.log_level))

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, settings.log_level))
    console_formatter = ColoredFormatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, settings.log_level))
        file_formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    root_logger.propagate = False

    root_logger.info(f"Logging initialized - Level: {settings.log_level}")
    if settings.log_file:
        root_logger.info(f"Logging to file: {settings.log_file}")
    if settings.database.log_db_access:
        root_logger.warning("Database access logging is ON (DATABASE__LOG_DB_ACCESS)")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Module names already inside the package are used as-is, so
    ``get_logger(__name__)`` from ``ledgerbot.db.managed`` yields
    ``ledgerbot.db.managed`` rather than a doubled prefix.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    if name == "ledgerbot" or name.startswith("ledgerbot."):
        return logging.getLogger(name)
    return logging.getLogger(f"ledgerbot.{name}")


class AccessLog:
    """
    Diagnostic log of store accesses, gated behind a runtime flag.

    When disabled, calls return immediately and emit nothing. The flag never
    changes control flow of the code doing the logging.

    Example:
        >>> access = AccessLog(get_logger(__name__), enabled=settings.database.log_db_access)
        >>> access("Requesting player %s from the document store", user_id)
    """

    def __init__(self, logger: logging.Logger, enabled: bool = False):
        self._logger = logger
        self.enabled = enabled

    def __call__(self, message: str, *args: object) -> None:
        if self.enabled:
            self._logger.info(message, *args)
