# =============================================================================
# File: portico/core/exceptions.py
# Description: Exception handlers and the terminal error-handling stage
# =============================================================================

import logging
from typing import Any, Tuple

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from portico.common.exceptions.exceptions import ServiceError
from portico.core.fastapi_types import FastAPI
from portico.core.request_logging import RecordingJSONResponse

logger = logging.getLogger("portico.exceptions")

DEFAULT_ERROR_MESSAGE = "Internal Server Error"


def error_status_and_message(exc: BaseException) -> Tuple[int, str]:
    """Status from exc.status / exc.status_code (default 500) and its message"""
    status_code = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if not isinstance(status_code, int) or not 400 <= status_code <= 599:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = getattr(exc, "message", None) or str(exc) or DEFAULT_ERROR_MESSAGE
    return status_code, message


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    logger.info("Exception handlers registered")


async def service_error_handler(request: Request, exc: ServiceError) -> RecordingJSONResponse:
    """Handle ServiceError raised by route handlers"""
    logger.warning(f"{type(exc).__name__} on path {request.url.path}: {exc.message}")

    return RecordingJSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> RecordingJSONResponse:
    """Answer framework HTTP errors (404, 405, ...) in the same {"message"} shape"""
    return RecordingJSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> RecordingJSONResponse:
    """Handle request validation errors"""
    logger.warning(f"Validation error on path {request.url.path}: {exc.errors()}")

    errors = []
    for error in exc.errors():
        error_dict: dict[str, Any] = {
            "loc": error["loc"],
            "msg": error["msg"],
            "type": error["type"],
        }
        if "ctx" in error:
            error_dict["ctx"] = {
                key: str(value) if isinstance(value, Exception) else value
                for key, value in error["ctx"].items()
            }
        errors.append(error_dict)

    return RecordingJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"message": "Request validation failed", "errors": errors},
    )


class ErrorHandlingMiddleware:
    """
    Terminal error stage, innermost in the middleware chain.

    Anything the routes raise that no exception handler claimed is answered
    with {"message": ...} and the status carried by the error (default 500).
    Errors with an explicit 4xx/5xx status are answered and logged once.
    Errors without one are answered and then re-raised, so the ASGI server
    reports them with a traceback as well.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            has_status = isinstance(
                getattr(exc, "status", None) or getattr(exc, "status_code", None), int
            )
            if response_started:
                raise

            status_code, message = error_status_and_message(exc)
            response = RecordingJSONResponse({"message": message}, status_code=status_code)
            await response(scope, receive, send_wrapper)

            if has_status:
                logger.warning(f"{type(exc).__name__} on path {scope['path']}: {status_code} {message}")
                return
            raise
