"""
Error taxonomy of the similarity pipeline and the handlers that render it.

Every pipeline failure is a ServiceError subclass carrying a machine-readable
code, so the HTTP routes and the event stream report it the same way.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

from similarity_service.logging import get_logger
from similarity_service.schemas import ErrorResponse

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from fastapi import FastAPI, Request

    ExceptionHandler = Callable[[Request, Exception], Coroutine[Any, Any, JSONResponse]]


class ServiceError(Exception):
    """
    Base exception for service errors.

    Attributes:
        error: Machine-readable error code
        message: Human-readable description
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, object] = details or {}

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.error, message=self.message, details=self.details)


class ModelLoadError(ServiceError):
    """A model artifact could not be resolved, downloaded or constructed."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("model_load_error", message, 503, details)


class ImageFetchError(ServiceError):
    """The image source is unreachable or does not decode to an image."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("image_fetch_error", message, 400, details)


class EncodeError(ServiceError):
    """An encoder forward pass failed."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("encode_error", message, 500, details)


class EmptyInputError(ServiceError):
    """Blank text, zero token chunks, or zero image bytes."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("empty_input", message, 400, details)


class DegenerateVectorError(ServiceError):
    """An embedding has zero norm, so direction and cosine are undefined."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("degenerate_vector", message, 422, details)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError as {error, message, details} with its status code."""
    get_logger().warning(
        "Request failed",
        extra={
            "path": request.url.path,
            "error_code": exc.error,
            "status_code": exc.status_code,
            "error_message": exc.message,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Log the traceback; the client only learns that something went wrong."""
    get_logger().exception(
        "Unhandled exception",
        extra={"path": request.url.path, "method": request.method},
    )
    body = ErrorResponse(error="internal_error", message="An unexpected error occurred", details={})
    return JSONResponse(status_code=500, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
