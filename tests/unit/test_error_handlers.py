"""
Unit tests for error codes, AppException and the exception handlers.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from errors.codes import ERROR_CODE_STATUS_MAP, ErrorCode, get_default_status_code
from errors.exceptions import (
    AppException,
    concurrency_conflict,
    duplicate_registration_number,
    invalid_tenant,
    missing_tenant,
    vehicle_not_found,
)
from errors.handlers import register_exception_handlers
from middleware.request_id import RequestIDMiddleware


class TestErrorCodes:

    def test_every_code_has_a_status(self):
        assert set(ERROR_CODE_STATUS_MAP) == set(ErrorCode)

    @pytest.mark.parametrize("code, status", [
        (ErrorCode.VALIDATION_ERROR, 400),
        (ErrorCode.INVALID_PAYLOAD, 400),
        (ErrorCode.VEHICLE_NOT_FOUND, 404),
        (ErrorCode.DUPLICATE_REGISTRATION_NUMBER, 409),
        (ErrorCode.INVALID_STATUS_TRANSITION, 409),
        (ErrorCode.RATE_LIMITED, 429),
        (ErrorCode.INTERNAL_ERROR, 500),
        (ErrorCode.STORAGE_UNAVAILABLE, 503),
    ])
    def test_status_mapping(self, code, status):
        assert get_default_status_code(code) == status

    def test_values_are_lowercase_identifiers(self):
        assert ErrorCode.MISSING_CORRELATION_ID.value == "missing_correlation_id"


class TestAppException:

    def test_defaults_from_code(self):
        exc = AppException(ErrorCode.INVALID_HEADING)
        assert exc.status_code == 400
        assert exc.message == "headingDegrees must be in range [0, 360)"
        assert exc.to_dict() == {
            "error_code": "invalid_heading",
            "message": "headingDegrees must be in range [0, 360)",
        }

    def test_tenant_messages_name_the_header(self):
        assert missing_tenant("X-Tenant-Id").message == "Missing required tenant header. 'X-Tenant-Id'."
        assert invalid_tenant("X-Tenant-Id").message == (
            "Tenant header must be a non-empty GUID. 'X-Tenant-Id'."
        )

    def test_factories(self):
        assert vehicle_not_found("v-1").details == {"vehicle_id": "v-1"}
        assert duplicate_registration_number("AB-1").status_code == 409
        assert concurrency_conflict().error_code == ErrorCode.CONCURRENCY_CONFLICT


class Body(BaseModel):
    name: str


class TestExceptionHandlers:

    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_exception_handlers(app)
        app.add_middleware(RequestIDMiddleware)

        @app.get("/conflict")
        async def conflict():
            raise duplicate_registration_number("AB-1")

        @app.post("/body")
        async def body(payload: Body):
            return payload

        @app.get("/boom")
        async def boom():
            raise RuntimeError("secret internals")

        return TestClient(app, raise_server_exceptions=False)

    def test_app_exception_body(self, client):
        response = client.get("/conflict", headers={"X-Request-ID": "req-1"})

        assert response.status_code == 409
        assert response.json() == {
            "error_code": "duplicate_registration_number",
            "message": "A vehicle with the same registration number already exists for this tenant.",
            "details": {"registration_number": "AB-1"},
            "request_id": "req-1",
        }

    def test_schema_failure_is_validation_error(self, client):
        response = client.post("/body", json={"name": 5, "extra": True})

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "validation_error"
        assert body["details"]["validation_errors"][0]["loc"] == ["body", "name"]

    def test_unexpected_error_is_generic(self, client):
        response = client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["error_code"] == "internal_error"
        assert "secret" not in body["message"]
        assert body["request_id"]
