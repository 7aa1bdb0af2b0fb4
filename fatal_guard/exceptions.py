"""
Unified exception type for runtime errors promoted by the error handler.

This module provides:
- ErrorCode severity flags used by the host runtime and the reporting mask
- ErrorHandlerException, the single representation for serious runtime
  errors, uncaught failures and fatal shutdown errors
- Friendly name and stable local code lookups for the fatal log
- The "currently stringifying" flag checked before raising from the error hook
"""

from contextlib import contextmanager
from contextvars import ContextVar
from enum import IntFlag
from functools import wraps
from typing import Callable, Dict, Iterator, Optional, TypeVar

from fatal_guard.models.error import CapturedError

T = TypeVar('T')


class ErrorCode(IntFlag):
    """Severity codes for runtime conditions."""
    ERROR = 1
    WARNING = 2
    PARSE = 4
    NOTICE = 8
    CORE_ERROR = 16
    CORE_WARNING = 32
    COMPILE_ERROR = 64
    COMPILE_WARNING = 128
    USER_ERROR = 256
    USER_WARNING = 512
    USER_NOTICE = 1024
    STRICT = 2048
    RECOVERABLE_ERROR = 4096
    DEPRECATED = 8192
    USER_DEPRECATED = 16384
    ALL = 32767


# Conditions that never reach the error hook: they stop the runtime at once
UNHANDLEABLE_CODES = frozenset({
    ErrorCode.ERROR,
    ErrorCode.PARSE,
    ErrorCode.CORE_ERROR,
    ErrorCode.CORE_WARNING,
    ErrorCode.COMPILE_ERROR,
    ErrorCode.COMPILE_WARNING,
})

# Conditions that stop the runtime when no hook handled them, seen from the shutdown hook
FATAL_CODES = UNHANDLEABLE_CODES | {ErrorCode.USER_ERROR}

# Informational conditions the error hook never promotes
IGNORED_CODES = frozenset({
    ErrorCode.NOTICE,
    ErrorCode.WARNING,
    ErrorCode.USER_NOTICE,
    ErrorCode.USER_WARNING,
    ErrorCode.DEPRECATED,
})

_NAMES: Dict[int, str] = {
    ErrorCode.ERROR: "Fatal Error",
    ErrorCode.WARNING: "Warning",
    ErrorCode.PARSE: "Parse Error",
    ErrorCode.NOTICE: "Notice",
    ErrorCode.CORE_ERROR: "Core Error",
    ErrorCode.CORE_WARNING: "Core Warning",
    ErrorCode.COMPILE_ERROR: "Compile Error",
    ErrorCode.COMPILE_WARNING: "Compile Warning",
    ErrorCode.USER_ERROR: "User Error",
    ErrorCode.USER_WARNING: "User Warning",
    ErrorCode.USER_NOTICE: "User Notice",
    ErrorCode.STRICT: "Strict Notice",
    ErrorCode.RECOVERABLE_ERROR: "Recoverable Error",
    ErrorCode.DEPRECATED: "Deprecated",
    ErrorCode.USER_DEPRECATED: "User Deprecated",
}

# Stable identifiers for searching the fatal log
_LOCAL_CODES: Dict[int, str] = {
    ErrorCode.ERROR: "E1001",
    ErrorCode.WARNING: "E1002",
    ErrorCode.PARSE: "E1004",
    ErrorCode.NOTICE: "E1008",
    ErrorCode.CORE_ERROR: "E1016",
    ErrorCode.CORE_WARNING: "E1032",
    ErrorCode.COMPILE_ERROR: "E1064",
    ErrorCode.COMPILE_WARNING: "E1128",
    ErrorCode.USER_ERROR: "E1256",
    ErrorCode.USER_WARNING: "E1512",
    ErrorCode.USER_NOTICE: "E2024",
    ErrorCode.STRICT: "E3048",
    ErrorCode.RECOVERABLE_ERROR: "E5096",
    ErrorCode.DEPRECATED: "E9192",
    ErrorCode.USER_DEPRECATED: "E9384",
}

UNKNOWN_NAME = "Uncaught Exception"
UNKNOWN_LOCAL_CODE = "E0000"


class ErrorHandlerException(Exception):
    """
    Runtime error promoted to an exception.

    Carries the severity code of the original condition together with the
    source location it was reported at. ``previous`` links to the error that
    caused this one and is exposed as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        code: int = 0,
        severity: int = ErrorCode.ERROR,
        filename: Optional[str] = None,
        lineno: Optional[int] = None,
        previous: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = int(code)
        self.severity = int(severity)
        self.filename = filename
        self.lineno = lineno
        if previous is not None:
            self.__cause__ = previous

    @property
    def previous(self) -> Optional[BaseException]:
        """Error this one was chained from, if any."""
        return self.__cause__

    @classmethod
    def from_captured(cls, error: CapturedError) -> "ErrorHandlerException":
        """
        Build the exception chain for an error recorded by the host runtime.

        Args:
            error: Last error reported by the runtime

        Returns:
            Exception for ``error`` with its previous errors chained as causes
        """
        captured = []
        current: Optional[CapturedError] = error
        while current is not None:
            captured.append(current)
            current = current.previous

        exception = None
        for item in reversed(captured):
            exception = cls(item.message, item.code, item.code, item.file, item.line, previous=exception)
        return exception

    @staticmethod
    def get_name(code: int) -> str:
        """Return the user friendly name for a severity code."""
        return _NAMES.get(code, UNKNOWN_NAME)

    @staticmethod
    def get_local_code(code: int) -> str:
        """Return the stable local code for a severity code."""
        return _LOCAL_CODES.get(code, UNKNOWN_LOCAL_CODE)

    @staticmethod
    def is_fatal_error(error: Optional[CapturedError]) -> bool:
        """
        Check whether a recorded error stopped the runtime.

        Args:
            error: Last error reported by the runtime, or None

        Returns:
            True if the error's code is in the fatal set
        """
        return error is not None and error.code in FATAL_CODES


class RuntimeErrorWarning(RuntimeWarning):
    """Warning category that carries an explicit severity code."""

    def __init__(self, message: str, code: int = ErrorCode.USER_ERROR):
        super().__init__(message)
        self.code = int(code)


_stringifying: ContextVar[bool] = ContextVar("fatal_guard_stringifying", default=False)


@contextmanager
def stringifying() -> Iterator[None]:
    """
    Mark the current context as converting an object to a string.

    Errors reported while the flag is set are logged and terminate the
    process instead of being raised out of ``__str__``.
    """
    token = _stringifying.set(True)
    try:
        yield
    finally:
        _stringifying.reset(token)


def is_stringifying() -> bool:
    """Return True inside a ``stringifying()`` block."""
    return _stringifying.get()


def safe_str(method: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator for ``__str__`` implementations that must never raise.

    Example:
        class Money:
            @safe_str
            def __str__(self):
                return format_amount(self.amount)
    """
    @wraps(method)
    def wrapper(*args, **kwargs):
        with stringifying():
            return method(*args, **kwargs)
    return wrapper
