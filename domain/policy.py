"""
Latest-location policy.

Pure decision logic: which fix supersedes which, and how a replacement
snapshot is built. Nothing here performs I/O or knows about tenants
beyond copying identifiers.

Every comparison goes through ``fix_order_key``:

1. device time, later wins
2. device sequence, absent treated as 0, higher wins
3. server receipt time, later wins

All fixes of one batch share a receipt time, so the third key only ever
decides between fixes from different ingestion calls.
"""

from datetime import datetime
from typing import Optional, Tuple, Union

from domain.fixes import GpsFix
from domain.values import require_utc
from domain.vehicles import VehicleLatestLocation

OrderKey = Tuple[datetime, int, datetime]


def fix_order_key(item: Union[GpsFix, VehicleLatestLocation]) -> OrderKey:
    """Ordering key shared by fixes and stored snapshots."""
    return item.order_key


def is_newer(candidate: GpsFix, other: GpsFix) -> bool:
    """
    Return True when ``candidate`` strictly supersedes ``other``.

    Raises:
        ValueError: If either fix is None
    """
    if candidate is None:
        raise ValueError("candidate fix is required")
    if other is None:
        raise ValueError("other fix is required")
    return fix_order_key(candidate) > fix_order_key(other)


def should_replace(
    current: Optional[VehicleLatestLocation],
    candidate: GpsFix
) -> bool:
    """
    Decide whether ``candidate`` should become the vehicle's latest location.

    Always True when there is no current snapshot.

    Raises:
        ValueError: If candidate is None
    """
    if candidate is None:
        raise ValueError("candidate fix is required")
    if current is None:
        return True
    return fix_order_key(candidate) > fix_order_key(current)


def create_snapshot(
    tenant_id: str,
    vehicle_id: str,
    fix: GpsFix,
    route_schedule_id: Optional[str],
    updated_at_utc: datetime
) -> VehicleLatestLocation:
    """
    Build the replacement snapshot for ``fix``.

    ``route_schedule_id`` is the value carried over from the snapshot being
    replaced; it is never derived from the fix.

    Raises:
        ValueError: If fix is None
        TelemetryValidationError: If updated_at_utc is not UTC
    """
    if fix is None:
        raise ValueError("fix is required")
    updated_at_utc = require_utc("updated_at_utc", updated_at_utc)
    return VehicleLatestLocation(
        tenant_id=tenant_id,
        vehicle_id=vehicle_id,
        gps_fix_id=fix.id,
        device_time_utc=fix.device_time_utc,
        received_at_utc=fix.received_at_utc,
        device_sequence=fix.sequence_or_zero,
        latitude=fix.latitude.value,
        longitude=fix.longitude.value,
        speed_kph=fix.speed.value if fix.speed is not None else None,
        heading_degrees=fix.heading.value if fix.heading is not None else None,
        accuracy_meters=fix.accuracy.value if fix.accuracy is not None else None,
        route_schedule_id=route_schedule_id,
        updated_at_utc=updated_at_utc,
    )
