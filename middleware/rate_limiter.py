"""
Per-client rate limiting built on slowapi.

A single default limit applies to every route. Requests over the limit
get a 429 with the standard error body and ``error_code`` rate_limited.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from errors.codes import ErrorCode
from errors.handlers import ErrorResponse, get_request_id

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 60


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from the request.

    Forwarding headers set by a load balancer or proxy win over the
    direct peer address.

    Args:
        request: The incoming request

    Returns:
        The client's IP address as a string
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # first entry is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def get_rate_limit_string(requests_per_minute: int) -> str:
    """slowapi limit string, e.g. ``600/minute``."""
    return f"{requests_per_minute}/minute"


def create_limiter(requests_per_minute: int, enabled: bool = True) -> Limiter:
    """
    Build a limiter with one default limit keyed by client IP.

    Each app gets its own limiter so counters are not shared between
    application instances.
    """
    return Limiter(
        key_func=get_client_ip,
        default_limits=[get_rate_limit_string(requests_per_minute)],
        enabled=enabled,
    )


def setup_rate_limiting(
    app: FastAPI,
    requests_per_minute: int = 600,
    enabled: bool = True
) -> None:
    """
    Configure rate limiting for a FastAPI application.

    Args:
        app: The FastAPI application instance
        requests_per_minute: Limit per client IP
        enabled: When False no middleware is installed
    """
    if not enabled:
        logger.info("Rate limiting is disabled")
        return

    app.state.limiter = create_limiter(requests_per_minute)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    logger.info(f"Rate limiting configured: {requests_per_minute}/min per client")


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Render RateLimitExceeded in the application's error format.

    Args:
        request: The request that exceeded the limit
        exc: The slowapi exception

    Returns:
        429 JSON response with a Retry-After header
    """
    request_id = get_request_id(request)
    body = ErrorResponse(
        error_code=ErrorCode.RATE_LIMITED.value,
        message="Too many requests. Please slow down.",
        details={
            "limit": str(exc.detail),
            "retry_after_seconds": RETRY_AFTER_SECONDS,
        },
        request_id=request_id,
    )

    logger.warning(
        f"Rate limit exceeded for IP {get_client_ip(request)}",
        extra={"extra_data": {
            "path": request.url.path,
            "method": request.method,
            "limit": str(exc.detail),
        }}
    )

    return JSONResponse(
        status_code=429,
        content=body.model_dump(exclude_none=True),
        headers={
            "Retry-After": str(RETRY_AFTER_SECONDS),
            "X-Request-ID": request_id,
        },
    )
