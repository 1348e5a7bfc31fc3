"""
Integration test configuration and fixtures.

The API runs in-process through TestClient with the in-memory store, so
every request passes the full middleware stack, routing and services.
"""
from typing import Any, Callable, Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from main import create_app
from middleware.tenant import TENANT_HEADER
from storage.memory import InMemoryTrackingStore
from support import OTHER_TENANT_ID, TENANT_ID


@pytest.fixture
def test_settings() -> Settings:
    """Development settings with both test tenants bootstrapped."""
    return Settings(
        _env_file=None,
        rate_limit_enabled=False,
        bootstrap_tenant_ids=[TENANT_ID, OTHER_TENANT_ID],
    )


@pytest.fixture
def store() -> InMemoryTrackingStore:
    return InMemoryTrackingStore()


@pytest.fixture
def client(test_settings: Settings, store: InMemoryTrackingStore) -> Iterator[TestClient]:
    """TestClient with the lifespan running, so tenants are registered."""
    app = create_app(settings=test_settings, store=store)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def tenant_headers() -> Dict[str, str]:
    return {TENANT_HEADER: TENANT_ID}


@pytest.fixture
def create_vehicle(client: TestClient, tenant_headers: Dict[str, str]) -> Callable[..., Dict[str, Any]]:
    """Register a vehicle through the API and return its JSON body."""
    def _create(**body: Any) -> Dict[str, Any]:
        response = client.post("/vehicles", json=body, headers=tenant_headers)
        assert response.status_code == 201, response.text
        return response.json()
    return _create


@pytest.fixture
def gps_fix_body() -> Callable[..., Dict[str, Any]]:
    """camelCase fix body; keyword overrides replace or add fields."""
    def _body(**overrides: Any) -> Dict[str, Any]:
        body = {
            "latitude": 51.5074,
            "longitude": -0.1278,
            "deviceTimeUtc": "2026-01-30T12:00:00Z",
            "speedKph": 42.5,
            "headingDegrees": 90.0,
            "correlationId": "trace-1",
        }
        body.update(overrides)
        return body
    return _body
