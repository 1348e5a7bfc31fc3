"""
Tenant resolution middleware.

Requests name their tenant in the ``X-Tenant-Id`` header. The middleware
checks the value is a non-nil UUID registered with the tracking store,
stores the resolved TenantContext on ``request.state`` and publishes the
id to log lines. A request without the header passes through untouched;
endpoints that need a tenant reject it with ``missing_tenant``.
"""

import logging
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from errors.exceptions import AppException, invalid_tenant, missing_tenant
from errors.handlers import build_error_response

logger = logging.getLogger(__name__)

tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")

TENANT_HEADER = "X-Tenant-Id"


@dataclass(frozen=True)
class TenantContext:
    """The tenant a request acts for."""
    tenant_id: str


def parse_tenant_id(raw: Optional[str]) -> Optional[str]:
    """Canonical tenant id, or None if ``raw`` is not a non-nil UUID."""
    try:
        parsed = uuid.UUID((raw or "").strip())
    except ValueError:
        return None
    if parsed.int == 0:
        return None
    return str(parsed)


class TenantResolutionMiddleware(BaseHTTPMiddleware):
    """
    Resolve ``X-Tenant-Id`` against the store held in ``app.state.store``.

    Malformed, nil or unknown tenant ids are answered here with 400
    ``invalid_tenant`` and never reach a route.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        raw = request.headers.get(TENANT_HEADER)
        if raw is None or not raw.strip():
            return await call_next(request)

        try:
            tenant_id = await self._resolve(request, raw)
        except AppException as exc:
            logger.warning(
                f"Tenant resolution failed: {exc.message}",
                extra={"extra_data": {"error_code": exc.error_code.value}}
            )
            return build_error_response(
                request, exc.error_code, exc.message, exc.status_code, exc.details
            )

        request.state.tenant = TenantContext(tenant_id=tenant_id)
        token = tenant_id_var.set(tenant_id)
        try:
            return await call_next(request)
        finally:
            tenant_id_var.reset(token)

    async def _resolve(self, request: Request, raw: str) -> str:
        tenant_id = parse_tenant_id(raw)
        if tenant_id is None:
            raise invalid_tenant(TENANT_HEADER)
        store: Any = request.app.state.store
        if not await store.tenant_exists(tenant_id):
            raise invalid_tenant(TENANT_HEADER)
        return tenant_id


def get_tenant_id(request: Request) -> Optional[str]:
    """Dependency: the resolved tenant id, or None when no header was sent."""
    tenant: Optional[TenantContext] = getattr(request.state, "tenant", None)
    return tenant.tenant_id if tenant else None


def require_tenant_id(request: Request) -> str:
    """Dependency: the resolved tenant id; raises ``missing_tenant`` without one."""
    tenant_id = get_tenant_id(request)
    if tenant_id is None:
        raise missing_tenant(TENANT_HEADER)
    return tenant_id
