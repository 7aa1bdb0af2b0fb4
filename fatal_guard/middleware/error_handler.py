"""
FastAPI integration for the fatal error handler.

A long-lived server process cannot terminate on every failed request, so
here an unhandled exception is recorded through the same ErrorHandler and the
caller gets the same generic failure body with a 500 status.
"""

from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fatal_guard.handler import ErrorHandler, error_handler
from fatal_guard.models.api_response import FailureResponse
from fatal_guard.utils.logging import get_logger, log_error_with_context

logger = get_logger(__name__, hook="web")


def request_context(request: Request) -> Dict[str, str]:
    """
    Build CGI-style request variables for an incoming request.

    Args:
        request: FastAPI request object

    Returns:
        Mapping with REMOTE_ADDR, SERVER_NAME, REQUEST_URI and HTTPS
    """
    request_uri = request.url.path
    if request.url.query:
        request_uri += f"?{request.url.query}"

    return {
        "REMOTE_ADDR": request.client.host if request.client else "-",
        "SERVER_NAME": request.url.netloc,
        "REQUEST_URI": request_uri,
        "HTTPS": "on" if request.url.scheme == "https" else "",
    }


def install_exception_handlers(app: FastAPI, handler: Optional[ErrorHandler] = None) -> None:
    """
    Route unhandled exceptions of a FastAPI app to the fatal log.

    Args:
        app: Application to install into
        handler: Handler whose log the records go to (default: the process-wide one)
    """
    handler = handler or error_handler

    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        try:
            handler.log_exception(exc, server=request_context(request), hook="web")
        except Exception as e:
            log_error_with_context(
                logger,
                f"Failed to write fatal log record for {request.method} {request.url.path}",
                e,
                hook="web"
            )

        # Never expose internal details to the caller
        return JSONResponse(status_code=500, content=FailureResponse().model_dump())

    app.add_exception_handler(Exception, unhandled_exception_handler)
