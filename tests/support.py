"""
Constants and builders shared by unit and integration tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from domain.fixes import GpsFix

TENANT_ID = "3f0c4a8e-1b2d-4c5e-8f9a-0b1c2d3e4f50"
OTHER_TENANT_ID = "7a6b5c4d-3e2f-4a1b-9c8d-7e6f5a4b3c20"
VEHICLE_A = "11111111-1111-4111-8111-111111111111"
VEHICLE_B = "22222222-2222-4222-8222-222222222222"
UNKNOWN_VEHICLE = "99999999-9999-4999-8999-999999999999"
NOW = datetime(2026, 1, 30, 12, 5, tzinfo=timezone.utc)


def utc(hour: int, minute: int = 0, second: int = 0) -> datetime:
    """A UTC instant on 2026-01-30."""
    return datetime(2026, 1, 30, hour, minute, second, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock returning a settable UTC instant."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class SequentialIds:
    """Id factory producing fix-1, fix-2, ..."""

    def __init__(self, prefix: str = "fix"):
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}-{self.count}"


def make_fix(
    vehicle_id: str,
    device_time: datetime,
    *,
    tenant_id: str = TENANT_ID,
    sequence: Optional[int] = None,
    received_at: datetime = NOW,
    fix_id: Optional[str] = None,
    latitude: float = 51.0,
    longitude: float = -0.1,
) -> GpsFix:
    """Build a valid GpsFix with sensible defaults."""
    return GpsFix.create(
        id=fix_id or f"fix-{device_time.isoformat()}-{sequence}-{received_at.isoformat()}",
        tenant_id=tenant_id,
        vehicle_id=vehicle_id,
        latitude=latitude,
        longitude=longitude,
        device_time_utc=device_time,
        received_at_utc=received_at,
        correlation_id="corr",
        device_sequence=sequence,
    )
