"""
Process-wide error and exception interceptor.

ErrorHandler installs itself into the host runtime for three kinds of events:
- exceptions that escape all handling (handle_exception)
- recoverable runtime errors (handle_error), promoted to ErrorHandlerException
- fatal errors only visible at shutdown (handle_fatal_error)

Each terminal event produces one ErrorRecord appended to the fatal log, and
the caller gets the same generic failure body no matter what went wrong.
"""

import fcntl
import os
import socket
import traceback
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional, Tuple

from fatal_guard.config import settings
from fatal_guard.exceptions import IGNORED_CODES, ErrorHandlerException, is_stringifying
from fatal_guard.models.api_response import FailureResponse
from fatal_guard.models.error import ErrorRecord
from fatal_guard.runtime import FATAL_EXIT_STATUS, HostRuntime, innermost_location, runtime as default_runtime
from fatal_guard.utils.logging import get_logger, log_captured_error, log_error_with_context

logger = get_logger(__name__)

# Exit status after an uncaught exception
UNCAUGHT_EXIT_STATUS = 1

# Separator between the text blocks of a cause chain
CHAIN_SEPARATOR = "\r\n"

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


class ErrorHandler:
    """
    Intercepts uncaught exceptions, recoverable errors and fatal shutdown errors.

    Designed for a one-request-per-process execution model: every terminal
    path ends the process, and nothing is kept between requests.
    """

    def __init__(
        self,
        runtime: Optional[HostRuntime] = None,
        log_root: Optional[str] = None,
        log_file_name: Optional[str] = None,
        memory_reserve_size: Optional[int] = None
    ):
        """
        Initialize the error handler.

        Args:
            runtime: Host runtime to install into (default: the running interpreter)
            log_root: Directory the fatal log lives in (default: settings.log_root)
            log_file_name: Fatal log file name (default: settings.log_file_name)
            memory_reserve_size: Bytes held in reserve until shutdown
                (default: settings.memory_reserve_size, 0 disables)
        """
        self.runtime = runtime or default_runtime
        self.log_root = log_root if log_root is not None else settings.log_root
        self.log_file_name = log_file_name or settings.log_file_name
        self.memory_reserve_size = (
            memory_reserve_size if memory_reserve_size is not None else settings.memory_reserve_size
        )
        self._memory_reserve: Optional[bytearray] = None
        self._shutdown_registered = False

    @property
    def log_path(self) -> str:
        """Full path of the fatal log file."""
        return os.path.join(self.log_root, self.log_file_name)

    @property
    def has_memory_reserve(self) -> bool:
        """True while the reserve buffer is held."""
        return self._memory_reserve is not None

    def register(self) -> None:
        """
        Install the handler into the host runtime.

        The exception hook must be installed before the error hook. The
        reserve buffer is allocated here and only released by the shutdown
        hook, so an out-of-memory shutdown still has room to log.
        """
        self.runtime.set_display_errors(False)
        self.runtime.set_exception_handler(self.handle_exception)
        self.runtime.set_error_handler(self.handle_error)

        if self.memory_reserve_size > 0:
            self._memory_reserve = bytearray(self.memory_reserve_size)

        if not self._shutdown_registered:
            self.runtime.register_shutdown_function(self.handle_fatal_error)
            self._shutdown_registered = True

        logger.info(
            "Error handler registered",
            extra={"log_path": self.log_path, "memory_reserve_size": self.memory_reserve_size}
        )

    def unregister(self) -> None:
        """Restore the host's previous exception and error hooks. Safe to call repeatedly."""
        self.runtime.restore_error_handler()
        self.runtime.restore_exception_handler()

    def handle_exception(self, exception: BaseException) -> None:
        """
        Handle an exception that escaped all handling.

        Logging failures are swallowed; the process always terminates.

        Args:
            exception: Uncaught exception
        """
        self.unregister()
        try:
            self.log_exception(exception, hook="exception")
        except Exception as e:
            log_error_with_context(logger, "Failed to write fatal log record", e, hook="exception")
        self.runtime.terminate(UNCAUGHT_EXIT_STATUS)

    def handle_error(self, code: int, message: str, file: str, line: int) -> bool:
        """
        Handle a recoverable runtime error.

        Informational codes and codes outside the reporting mask are left to
        the runtime. Anything else is raised as ErrorHandlerException, unless
        the error was reported while an object is being converted to a string,
        in which case it goes straight to the uncaught exception path.

        Args:
            code: Severity code
            message: Error message
            file: File the error was reported in
            line: Line the error was reported at

        Returns:
            False when the error is not handled here

        Raises:
            ErrorHandlerException: For every serious error
        """
        if not (self.runtime.error_reporting & code) or code in IGNORED_CODES:
            return False

        exception = ErrorHandlerException(message, code, code, file, line)
        if is_stringifying():
            self.handle_exception(exception)
            self.runtime.terminate(UNCAUGHT_EXIT_STATUS)
            return True

        raise exception

    def handle_fatal_error(self) -> None:
        """Report the runtime's last error at shutdown if it was fatal."""
        self._memory_reserve = None

        error = self.runtime.last_error()
        if not ErrorHandlerException.is_fatal_error(error):
            return

        exception = ErrorHandlerException.from_captured(error)
        try:
            self.log_exception(exception, hook="shutdown")
        except Exception as e:
            log_error_with_context(logger, "Failed to write fatal log record", e, hook="shutdown")
        self.return_msg()

    def log_exception(
        self,
        exception: BaseException,
        server: Optional[Mapping[str, str]] = None,
        hook: str = "exception"
    ) -> ErrorRecord:
        """
        Build the record for an exception and append it to the fatal log.

        The message field holds the full text of every exception in the cause
        chain, outermost first.

        Args:
            exception: Exception to record
            server: Request context to take the request URI from
                (default: the runtime's)
            hook: Hook the exception arrived through, for the operational log

        Returns:
            The record that was written
        """
        code = exception.code if isinstance(exception, ErrorHandlerException) else 0
        file, line = _error_location(exception)

        record = ErrorRecord(
            category=ErrorHandlerException.get_name(code),
            code=ErrorHandlerException.get_local_code(code),
            file=file,
            line=line,
            request_uri=self.get_current_uri(server),
            message=CHAIN_SEPARATOR.join(_format_exception(item) for item in iter_causes(exception)),
        )
        self.log_error(record)

        log_captured_error(logger, record.category, record.code, record.request_uri, hook)
        return record

    def log_error(self, record: Any) -> None:
        """
        Append a record to the fatal log.

        Writes a timestamp line and one ``'field': value`` line per field while
        holding an exclusive lock on the file. Anything other than an
        ErrorRecord or a mapping is ignored.

        Args:
            record: ErrorRecord or mapping of field names to values
        """
        if isinstance(record, ErrorRecord):
            fields = record.model_dump()
        elif isinstance(record, Mapping):
            fields = dict(record)
        else:
            return

        os.makedirs(self.log_root or ".", exist_ok=True)
        with open(self.log_path, "a", encoding="utf-8") as fp:
            fcntl.flock(fp, fcntl.LOCK_EX)
            try:
                fp.write(f"time: {datetime.now().strftime(TIMESTAMP_FORMAT)}\n")
                for field, value in fields.items():
                    fp.write(f"{field!r}: {value!r}\n")
                fp.flush()
            finally:
                fcntl.flock(fp, fcntl.LOCK_UN)

    def return_msg(self) -> None:
        """Send the generic failure body to the caller and terminate."""
        self.runtime.emit(FailureResponse().model_dump_json())
        self.runtime.terminate(FATAL_EXIT_STATUS)

    def get_current_uri(self, server: Optional[Mapping[str, str]] = None) -> str:
        """
        Reconstruct what was being served when the error happened.

        Args:
            server: Request context (default: the runtime's)

        Returns:
            Absolute URL for network requests, otherwise the command line
            arguments without the program name
        """
        server = self.runtime.server if server is None else server
        if server.get("REMOTE_ADDR"):
            https = server.get("HTTPS", "")
            scheme = "https" if https and https.lower() != "off" else "http"
            return f"{scheme}://{server.get('SERVER_NAME', '')}{server.get('REQUEST_URI', '')}"

        return " ".join(self.runtime.argv[1:])

    def get_server_ip(self, server: Optional[Mapping[str, str]] = None) -> str:
        """Return the address of the server handling the request, or an empty string."""
        server = self.runtime.server if server is None else server
        if server.get("SERVER_ADDR"):
            return server["SERVER_ADDR"]
        if server.get("LOCAL_ADDR"):
            return server["LOCAL_ADDR"]
        if server.get("HOSTNAME"):
            try:
                return socket.gethostbyname(server["HOSTNAME"])
            except OSError:
                return server["HOSTNAME"]
        return self.runtime.environ.get("SERVER_ADDR", "")


def iter_causes(exception: BaseException) -> Iterator[BaseException]:
    """
    Walk an exception and the errors it was chained from, outermost first.

    Follows ``__cause__``, then ``__context__`` unless it was suppressed.
    Stops at the first exception already seen.
    """
    seen = set()
    current: Optional[BaseException] = exception
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _error_location(exception: BaseException) -> Tuple[str, int]:
    if isinstance(exception, ErrorHandlerException) and exception.filename is not None:
        return exception.filename, exception.lineno or 0
    return innermost_location(exception.__traceback__)


def _format_exception(exception: BaseException) -> str:
    text = "".join(
        traceback.format_exception(type(exception), exception, exception.__traceback__, chain=False)
    ).rstrip("\n")
    if isinstance(exception, ErrorHandlerException) and exception.filename is not None:
        text += f" in {exception.filename}:{exception.lineno}"
    return text


# Handler for the running interpreter
error_handler = ErrorHandler()


def register() -> ErrorHandler:
    """Install the default handler into the running interpreter."""
    error_handler.register()
    return error_handler
