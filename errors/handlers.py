"""
Exception handlers for the GeoTrack ingestion service.

Every error leaves the API in the same shape: error_code, message,
optional details and the request_id of the call.
"""

import logging
import traceback
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from errors.codes import ErrorCode
from errors.exceptions import AppException

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """
    Structured error response model.

    All error responses from the API follow this format so clients can
    branch on ``error_code``.
    """
    error_code: str
    message: str
    details: Optional[dict[str, Any]] = None
    request_id: str


def get_request_id(request: Request) -> str:
    """
    Get the request ID from the request state or generate a new one.

    Args:
        request: The FastAPI request object

    Returns:
        The request ID string
    """
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return str(uuid.uuid4())


def build_error_response(
    request: Request,
    error_code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[dict[str, Any]] = None
) -> JSONResponse:
    """Render an ErrorResponse as JSON with the request id attached."""
    error_response = ErrorResponse(
        error_code=error_code.value,
        message=message,
        details=details,
        request_id=get_request_id(request),
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(exclude_none=True),
    )


async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle known application exceptions and convert to structured response.

    Args:
        request: The FastAPI request object
        exc: The AppException that was raised

    Returns:
        JSONResponse with structured error format
    """
    logger.warning(
        "Application error occurred",
        extra={"extra_data": {
            "error_code": exc.error_code.value,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "details": exc.details,
            "path": request.url.path,
            "method": request.method,
        }}
    )
    return build_error_response(
        request, exc.error_code, exc.message, exc.status_code, exc.details
    )


async def handle_request_validation_error(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Convert FastAPI request validation failures to ``validation_error``.

    Field errors are passed back under ``details.validation_errors``.
    """
    errors = jsonable_encoder(exc.errors(), exclude={"ctx", "url", "input"})
    logger.info(
        "Request validation failed",
        extra={"extra_data": {
            "path": request.url.path,
            "method": request.method,
            "error_count": len(errors),
        }}
    )
    return build_error_response(
        request,
        ErrorCode.VALIDATION_ERROR,
        "Request payload failed validation",
        400,
        {"validation_errors": errors},
    )


async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions safely without exposing internal details.

    The full stack trace is logged; the client receives a generic message.

    Args:
        request: The FastAPI request object
        exc: The unexpected exception that was raised

    Returns:
        JSONResponse with a generic internal_error body
    """
    logger.error(
        "Unexpected error occurred",
        extra={"extra_data": {
            "error_code": ErrorCode.INTERNAL_ERROR.value,
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "stack_trace": traceback.format_exc(),
        }},
        exc_info=True,
    )
    return build_error_response(
        request,
        ErrorCode.INTERNAL_ERROR,
        "An unexpected error occurred. Please try again later.",
        500,
    )


def register_exception_handlers(app) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(AppException, handle_app_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_exception)

    logger.info("Exception handlers registered successfully")
