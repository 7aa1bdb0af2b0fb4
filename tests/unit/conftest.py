"""
Shared fixtures for the fatal error handler tests.
"""

from typing import Any, Callable, Dict, List, Optional

import pytest

from fatal_guard.exceptions import ErrorCode
from fatal_guard.handler import ErrorHandler
from fatal_guard.models.error import CapturedError
from fatal_guard.runtime import HostRuntime


class FakeRuntime(HostRuntime):
    """In-memory host runtime that records every call the handler makes."""

    def __init__(
        self,
        server: Optional[Dict[str, str]] = None,
        environ: Optional[Dict[str, str]] = None,
        argv: Optional[List[str]] = None,
        error_reporting: int = ErrorCode.ALL
    ):
        self.server = server if server is not None else {}
        self.environ = environ if environ is not None else {}
        self.argv = argv if argv is not None else ["prog"]
        self.error_reporting = int(error_reporting)
        self.display_errors = True
        self.exception_handler: Optional[Callable[..., Any]] = None
        self.error_handler: Optional[Callable[..., Any]] = None
        self.installed: List[str] = []
        self.shutdown_functions: List[Callable[[], Any]] = []
        self.recorded_error: Optional[CapturedError] = None
        self.emitted: List[str] = []
        self.exit_status: Optional[int] = None

    def set_display_errors(self, enabled: bool) -> None:
        self.display_errors = enabled

    def set_exception_handler(self, handler) -> None:
        self.exception_handler = handler
        self.installed.append("exception")

    def restore_exception_handler(self) -> None:
        self.exception_handler = None

    def set_error_handler(self, handler) -> None:
        self.error_handler = handler
        self.installed.append("error")

    def restore_error_handler(self) -> None:
        self.error_handler = None

    def register_shutdown_function(self, function) -> None:
        self.shutdown_functions.append(function)

    def last_error(self) -> Optional[CapturedError]:
        return self.recorded_error

    def emit(self, body: str) -> None:
        self.emitted.append(body)

    def terminate(self, status: int) -> None:
        self.exit_status = status
        raise SystemExit(status)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    """Create a fake runtime in command line mode."""
    return FakeRuntime(argv=["prog", "--flag", "value"])


@pytest.fixture
def handler(fake_runtime: FakeRuntime, tmp_path) -> ErrorHandler:
    """Create an error handler writing to a temporary log root."""
    return ErrorHandler(runtime=fake_runtime, log_root=str(tmp_path), memory_reserve_size=1024)


@pytest.fixture
def read_log(handler: ErrorHandler) -> Callable[[], List[str]]:
    """Return a reader for the lines of the handler's fatal log."""
    def reader() -> List[str]:
        with open(handler.log_path, encoding="utf-8") as fp:
            return fp.read().splitlines()
    return reader
