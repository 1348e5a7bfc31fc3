"""
Request ID middleware for request correlation.

Every request gets an id, taken from ``X-Request-ID`` when the caller
sends a usable one and generated otherwise. The id is stored on
``request.state`` for error responses, in a context variable for log
lines, and echoed back in the response header.
"""

import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


def _usable_request_id(value: str) -> bool:
    return bool(value) and len(value) <= MAX_REQUEST_ID_LENGTH and value.isprintable()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Attach a correlation id to each request and its response.

    Caller-supplied ids longer than 128 characters or containing control
    characters are replaced with a fresh UUID.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
        if not _usable_request_id(request_id):
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)


def get_request_id() -> str:
    """Current request id, or an empty string outside a request."""
    return request_id_var.get()
