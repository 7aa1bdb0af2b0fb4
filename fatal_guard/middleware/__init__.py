"""Web framework integration."""

from fatal_guard.middleware.error_handler import install_exception_handlers, request_context

__all__ = ["install_exception_handlers", "request_context"]
