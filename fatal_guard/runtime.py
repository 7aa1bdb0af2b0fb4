"""
Host runtime bindings for the error handler.

The error handler never touches interpreter globals directly. Everything it
needs from the process it is running in goes through a HostRuntime:
- installing and restoring the uncaught exception and error hooks
- registering the shutdown hook
- the last error the runtime recorded and the active reporting mask
- ambient request context (CGI environment, command line arguments)
- writing the response body and terminating the process
"""

import atexit
import os
import sys
import warnings
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, Callable, List, Mapping, Optional, Sequence, TextIO, Type

from fatal_guard.config import settings
from fatal_guard.exceptions import UNHANDLEABLE_CODES, ErrorCode, ErrorHandlerException, RuntimeErrorWarning
from fatal_guard.models.error import CapturedError
from fatal_guard.utils.logging import get_logger

logger = get_logger(__name__)

ExceptionHook = Callable[[BaseException], Any]
ErrorHook = Callable[[int, str, str, int], Any]

# Exit status used by the runtime itself when a fatal error stops execution
FATAL_EXIT_STATUS = 255


class HostRuntime(ABC):
    """Interface to the process-wide runtime the error handler is installed into."""

    server: Mapping[str, str]
    environ: Mapping[str, str]
    argv: List[str]
    error_reporting: int

    @abstractmethod
    def set_display_errors(self, enabled: bool) -> None:
        """Turn the runtime's own display of unhandled errors on or off."""
        pass

    @abstractmethod
    def set_exception_handler(self, handler: ExceptionHook) -> None:
        """Install the hook for exceptions that escape all handling."""
        pass

    @abstractmethod
    def restore_exception_handler(self) -> None:
        """Reinstate the exception hook that was active before set_exception_handler."""
        pass

    @abstractmethod
    def set_error_handler(self, handler: ErrorHook) -> None:
        """
        Install the hook for recoverable runtime errors.

        The hook is called with (code, message, file, line) and returns False
        to let the runtime's default behaviour proceed.
        """
        pass

    @abstractmethod
    def restore_error_handler(self) -> None:
        """Reinstate the error hook that was active before set_error_handler."""
        pass

    @abstractmethod
    def register_shutdown_function(self, function: Callable[[], Any]) -> None:
        """Run ``function`` when the process shuts down."""
        pass

    @abstractmethod
    def last_error(self) -> Optional[CapturedError]:
        """Return the last error the runtime recorded, or None."""
        pass

    @abstractmethod
    def emit(self, body: str) -> None:
        """Write a response body to the caller."""
        pass

    @abstractmethod
    def terminate(self, status: int) -> None:
        """End the process with the given exit status."""
        pass


class PythonRuntime(HostRuntime):
    """
    HostRuntime over the running interpreter.

    - Uncaught exceptions arrive through ``sys.excepthook``
    - Recoverable errors arrive through ``warnings.showwarning`` and trigger_error()
    - The shutdown hook runs from ``atexit``
    - A MemoryError reaching ``sys.excepthook`` is treated as the runtime's
      out-of-memory fatal: it is recorded as the last error and the process
      exits so the shutdown hook can report it
    """

    def __init__(
        self,
        server: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
        argv: Optional[Sequence[str]] = None,
        error_reporting: int = ErrorCode.ALL,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None
    ):
        """
        Initialize the runtime binding.

        Args:
            server: Request context (CGI variables); defaults to os.environ
            environ: Process environment; defaults to os.environ
            argv: Command line arguments; defaults to sys.argv
            error_reporting: Mask of codes that reach the error hook
            stdout: Stream response bodies are written to (default: sys.stdout)
            stderr: Stream displayed errors are written to (default: sys.stderr)
        """
        self.server = server if server is not None else os.environ
        self.environ = environ if environ is not None else os.environ
        self.argv = list(argv) if argv is not None else list(sys.argv)
        self.error_reporting = int(error_reporting)
        self.display_errors = True
        self._stdout = stdout
        self._stderr = stderr
        self._last_error: Optional[CapturedError] = None
        self._exception_handler: Optional[ExceptionHook] = None
        self._previous_excepthook: Optional[Callable[..., Any]] = None
        self._error_handler: Optional[ErrorHook] = None
        self._previous_showwarning: Optional[Callable[..., Any]] = None
        self._shutting_down = False

    def set_display_errors(self, enabled: bool) -> None:
        self.display_errors = enabled

    def set_exception_handler(self, handler: ExceptionHook) -> None:
        if self._previous_excepthook is None:
            self._previous_excepthook = sys.excepthook
        self._exception_handler = handler
        sys.excepthook = self._excepthook

    def restore_exception_handler(self) -> None:
        if self._previous_excepthook is None:
            return
        sys.excepthook = self._previous_excepthook
        self._previous_excepthook = None
        self._exception_handler = None

    def set_error_handler(self, handler: ErrorHook) -> None:
        if self._previous_showwarning is None:
            self._previous_showwarning = warnings.showwarning
        self._error_handler = handler
        warnings.showwarning = self._showwarning

    def restore_error_handler(self) -> None:
        if self._previous_showwarning is None:
            return
        warnings.showwarning = self._previous_showwarning
        self._previous_showwarning = None
        self._error_handler = None

    def register_shutdown_function(self, function: Callable[[], Any]) -> None:
        atexit.register(self._run_shutdown_function, function)

    def last_error(self) -> Optional[CapturedError]:
        return self._last_error

    def record_error(self, code: int, message: str, file: str, line: int) -> CapturedError:
        """Store an error as the runtime's last recorded error."""
        self._last_error = CapturedError(code=int(code), message=message, file=file, line=line)
        return self._last_error

    def trigger_error(self, message: str, code: int = ErrorCode.USER_ERROR, stacklevel: int = 1) -> bool:
        """
        Report a runtime error at the caller's location.

        Unhandleable codes never reach the error hook: they stop the process
        and are left for the shutdown hook. Any other code is passed to the
        installed error hook, which may raise. Only errors the hook did not
        handle become the last recorded error.

        Args:
            message: Error message
            code: Severity code
            stacklevel: Frames above this call the error is attributed to

        Returns:
            True if the error hook handled the error
        """
        frame = sys._getframe(stacklevel)
        file, line = frame.f_code.co_filename, frame.f_lineno
        return self._dispatch_error(int(code), message, file, line, self._display)

    def emit(self, body: str) -> None:
        stream = self._stdout or sys.stdout
        stream.write(body)
        stream.flush()

    def terminate(self, status: int) -> None:
        for stream in (self._stdout or sys.stdout, self._stderr or sys.stderr):
            try:
                stream.flush()
            except (OSError, ValueError):
                pass
        if self._shutting_down:
            # SystemExit is ignored inside atexit callbacks
            os._exit(status)
        else:
            sys.exit(status)

    @staticmethod
    def warning_code(category: Type[Warning], message: Any) -> int:
        """
        Map a warning to a severity code.

        Args:
            category: Warning class
            message: Warning instance or message text

        Returns:
            Severity code for the error hook
        """
        if isinstance(message, RuntimeErrorWarning):
            return message.code
        if issubclass(category, (DeprecationWarning, PendingDeprecationWarning)):
            return ErrorCode.DEPRECATED
        if issubclass(category, UserWarning):
            return ErrorCode.USER_WARNING
        if issubclass(category, ResourceWarning):
            return ErrorCode.NOTICE
        return ErrorCode.WARNING

    def _excepthook(
        self,
        exc_type: Type[BaseException],
        exc: BaseException,
        tb: Optional[TracebackType]
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt) or self._exception_handler is None:
            (self._previous_excepthook or sys.__excepthook__)(exc_type, exc, tb)
            return

        if exc.__traceback__ is None and tb is not None:
            exc = exc.with_traceback(tb)

        if issubclass(exc_type, MemoryError):
            file, line = innermost_location(tb)
            self.record_error(ErrorCode.ERROR, str(exc) or "Allowed memory size exhausted", file, line)
            self.terminate(FATAL_EXIT_STATUS)
            return

        self._exception_handler(exc)

    def _showwarning(self, message, category, filename, lineno, file=None, line=None) -> None:
        def show(error: CapturedError) -> None:
            if self.display_errors and self._previous_showwarning is not None:
                self._previous_showwarning(message, category, filename, lineno, file, line)

        self._dispatch_error(self.warning_code(category, message), str(message), filename, lineno, show)

    def _dispatch_error(
        self,
        code: int,
        message: str,
        file: str,
        line: int,
        show: Callable[[CapturedError], None]
    ) -> bool:
        if code in UNHANDLEABLE_CODES:
            error = self.record_error(code, message, file, line)
            logger.warning(f"Fatal runtime error at {file}:{line}, shutting down")
            show(error)
            self.terminate(FATAL_EXIT_STATUS)
            return False

        if self._error_handler is not None and self._error_handler(code, message, file, line) is not False:
            return True

        error = self.record_error(code, message, file, line)
        show(error)
        if ErrorHandlerException.is_fatal_error(error):
            logger.warning(f"Unhandled fatal error at {file}:{line}, shutting down")
            self.terminate(FATAL_EXIT_STATUS)
        return False

    def _display(self, error: CapturedError) -> None:
        if not self.display_errors:
            return
        stream = self._stderr or sys.stderr
        stream.write(
            f"{ErrorHandlerException.get_name(error.code)}: {error.message} "
            f"in {error.file} on line {error.line}\n"
        )

    def _run_shutdown_function(self, function: Callable[[], Any]) -> None:
        self._shutting_down = True
        try:
            function()
        finally:
            self._shutting_down = False


def innermost_location(tb: Optional[TracebackType]) -> tuple[str, int]:
    """Return (file, line) of the frame an exception was raised in."""
    if tb is None:
        return "unknown", 0
    while tb.tb_next is not None:
        tb = tb.tb_next
    return tb.tb_frame.f_code.co_filename, tb.tb_lineno


# Default runtime for the running interpreter
runtime = PythonRuntime(error_reporting=settings.error_reporting)


def trigger_error(message: str, code: int = ErrorCode.USER_ERROR) -> bool:
    """Report a runtime error through the default runtime."""
    return runtime.trigger_error(message, code, stacklevel=2)
