"""Data models for the fatal error handler."""

from .api_response import FailureResponse, FailureStatus
from .error import CapturedError, ErrorRecord

__all__ = [
    # Error models
    "CapturedError",
    "ErrorRecord",
    # API response models
    "FailureResponse",
    "FailureStatus",
]
