"""Fatal error interception for one-request-per-process runtimes."""

__version__ = "0.1.0"

from fatal_guard.exceptions import (
    ErrorCode,
    ErrorHandlerException,
    RuntimeErrorWarning,
    safe_str,
    stringifying,
)
from fatal_guard.handler import ErrorHandler, error_handler, register
from fatal_guard.runtime import HostRuntime, PythonRuntime, trigger_error

__all__ = [
    "__version__",
    "ErrorCode",
    "ErrorHandlerException",
    "RuntimeErrorWarning",
    "safe_str",
    "stringifying",
    "ErrorHandler",
    "error_handler",
    "register",
    "HostRuntime",
    "PythonRuntime",
    "trigger_error",
]
