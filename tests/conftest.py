"""
Shared pytest fixtures and configuration for all tests.
"""
import os
from typing import Any, Callable, Dict, Optional
from unittest.mock import MagicMock

import pytest
from hypothesis import settings, Verbosity, Phase

from domain.vehicles import Tenant, Vehicle, VehicleIdentity
from storage.memory import InMemoryTrackingStore
from support import NOW, OTHER_TENANT_ID, TENANT_ID, FixedClock, SequentialIds

# Hypothesis profiles for property-based testing
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
    print_blob=True,
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    derandomize=True,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    phases=[Phase.explicit, Phase.reuse, Phase.generate],
)

settings.register_profile(
    "fast",
    max_examples=20,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture
def tenant_id() -> str:
    return TENANT_ID


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def id_factory() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
async def memory_store() -> InMemoryTrackingStore:
    """In-memory store with two tenants registered."""
    store = InMemoryTrackingStore()
    await store.add_tenant(Tenant(id=TENANT_ID, name="Acme Logistics", created_at_utc=NOW))
    await store.add_tenant(Tenant(id=OTHER_TENANT_ID, name="Other Fleet", created_at_utc=NOW))
    return store


@pytest.fixture
def add_vehicle(memory_store: InMemoryTrackingStore) -> Callable:
    """Register a vehicle in the memory store and return it."""
    async def _add(
        vehicle_id: str,
        tenant_id: str = TENANT_ID,
        registration_number: Optional[str] = None
    ) -> Vehicle:
        vehicle = Vehicle(
            tenant_id=tenant_id,
            id=vehicle_id,
            created_at_utc=NOW,
            identity=VehicleIdentity(registration_number=registration_number),
        )
        await memory_store.add_vehicle(vehicle)
        return vehicle

    return _add


@pytest.fixture
def fix_payload() -> Callable[..., Dict[str, Any]]:
    """Camel-case JSON body for a single GPS fix."""
    def _payload(**overrides: Any) -> Dict[str, Any]:
        body = {
            "latitude": 51.0,
            "longitude": -0.1,
            "deviceTimeUtc": "2026-01-30T12:00:00Z",
            "correlationId": "a",
        }
        body.update(overrides)
        return body

    return _payload


@pytest.fixture
def mock_telemetry() -> MagicMock:
    """Telemetry double recording metrics and audit events."""
    return MagicMock()
