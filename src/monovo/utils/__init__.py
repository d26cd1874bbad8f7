"""Utilities."""

from .logger import ColoredFormatter, setup_logger

__all__ = [
    "ColoredFormatter",
    "setup_logger",
]
