"""Utility modules for prcleaner."""

from .logging import get_logger, sanitize_log_value, setup_logging

__all__ = [
    "get_logger",
    "sanitize_log_value",
    "setup_logging",
]
