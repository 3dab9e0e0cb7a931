"""
Utilities package for assistantrelay.
"""

from .logging import LogContext, get_logger

__all__ = [
    "LogContext",
    "get_logger",
]
