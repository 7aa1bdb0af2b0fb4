"""
Utility modules for the fatal error handler.
"""

from fatal_guard.utils.logging import (
    get_logger,
    setup_logging,
    log_captured_error,
    log_error_with_context,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_captured_error",
    "log_error_with_context",
]
