"""Logging setup with colored console output."""

from __future__ import annotations

import logging
import sys

from colorama import Fore, Style, just_fix_windows_console

just_fix_windows_console()

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name by severity."""

    COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.RED + Style.BRIGHT,
    }

    def __init__(self, fmt: str, use_colors: bool = True) -> None:
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, coloring a copy so other handlers stay plain."""
        if not self.use_colors:
            return super().format(record)

        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, "")
        record.levelname = f"{color}{record.levelname}{Style.RESET_ALL}"
        return super().format(record)


def setup_logger(
    name: str = "monovo",
    level: str = "INFO",
    fmt: str | None = None,
    use_colors: bool = True,
) -> logging.Logger:
    """Attach a console handler to the ``name`` logger.

    Module loggers (``logging.getLogger(__name__)``) under the package
    propagate to it, so calling this once for "monovo" configures the
    whole pipeline.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: Custom format string
        use_colors: Whether to color the level names

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(ColoredFormatter(fmt or DEFAULT_FORMAT, use_colors=use_colors))
    logger.addHandler(handler)

    return logger
