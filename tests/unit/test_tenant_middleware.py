"""
Unit tests for tenant resolution.
"""
from typing import Optional

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from errors.handlers import register_exception_handlers
from middleware.request_id import RequestIDMiddleware
from middleware.tenant import (
    TENANT_HEADER,
    TenantResolutionMiddleware,
    get_tenant_id,
    parse_tenant_id,
    require_tenant_id,
    tenant_id_var,
)
from support import TENANT_ID


class TestParseTenantId:

    def test_canonical_form(self):
        assert parse_tenant_id(f" {TENANT_ID.upper()} ") == TENANT_ID

    @pytest.mark.parametrize("raw", [None, "", "acme", "00000000-0000-0000-0000-000000000000"])
    def test_invalid(self, raw):
        assert parse_tenant_id(raw) is None


class TestTenantResolutionMiddleware:

    @pytest.fixture
    def client(self, memory_store):
        app = FastAPI()
        app.state.store = memory_store
        register_exception_handlers(app)
        app.add_middleware(TenantResolutionMiddleware)
        app.add_middleware(RequestIDMiddleware)

        @app.get("/optional")
        async def optional(tenant_id: Optional[str] = Depends(get_tenant_id)):
            return {"tenant_id": tenant_id, "context": tenant_id_var.get()}

        @app.get("/required")
        async def required(tenant_id: str = Depends(require_tenant_id)):
            return {"tenant_id": tenant_id}

        return TestClient(app)

    def test_known_tenant_is_resolved(self, client):
        response = client.get("/optional", headers={TENANT_HEADER: TENANT_ID.upper()})
        assert response.status_code == 200
        assert response.json() == {"tenant_id": TENANT_ID, "context": TENANT_ID}

    def test_absent_header_passes_through(self, client):
        response = client.get("/optional")
        assert response.status_code == 200
        assert response.json()["tenant_id"] is None

    def test_required_tenant_missing(self, client):
        response = client.get("/required")
        assert response.status_code == 400
        assert response.json()["error_code"] == "missing_tenant"

    @pytest.mark.parametrize("header", [
        "not-a-guid",
        "00000000-0000-0000-0000-000000000000",
        "5d2a9a3e-0000-4000-8000-000000000001",
    ])
    def test_invalid_or_unknown_tenant(self, client, header):
        response = client.get("/optional", headers={TENANT_HEADER: header})

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "invalid_tenant"
        assert body["message"] == "Tenant header must be a non-empty GUID. 'X-Tenant-Id'."
        assert body["request_id"] == response.headers["X-Request-ID"]
