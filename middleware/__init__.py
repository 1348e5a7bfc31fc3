"""
Middleware components for the GeoTrack ingestion service.

Request correlation, tenant resolution and rate limiting.
"""

from middleware.request_id import RequestIDMiddleware, request_id_var
from middleware.tenant import (
    TENANT_HEADER,
    TenantContext,
    TenantResolutionMiddleware,
    get_tenant_id,
    require_tenant_id,
    tenant_id_var,
)
from middleware.rate_limiter import (
    create_limiter,
    get_client_ip,
    rate_limit_exceeded_handler,
    setup_rate_limiting,
)

__all__ = [
    "RequestIDMiddleware",
    "request_id_var",
    "TENANT_HEADER",
    "TenantContext",
    "TenantResolutionMiddleware",
    "get_tenant_id",
    "require_tenant_id",
    "tenant_id_var",
    "create_limiter",
    "get_client_ip",
    "rate_limit_exceeded_handler",
    "setup_rate_limiting",
]
