"""
Vehicle aggregate, tenant record and the latest-location snapshot.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import IntEnum
from typing import Optional, Tuple

from domain.errors import InvalidStateTransition, TelemetryValidationError, ValidationReason
from domain.values import (
    AccuracyMeters,
    HeadingDegrees,
    Latitude,
    Longitude,
    SpeedKph,
    require_utc,
)


def normalize_or_none(value: Optional[str]) -> Optional[str]:
    """Trim a string; blank or missing values become None."""
    if value is None or not value.strip():
        return None
    return value.strip()


class VehicleStatus(IntEnum):
    ACTIVE = 1
    INACTIVE = 2
    DECOMMISSIONED = 3


@dataclass(frozen=True)
class VehicleIdentity:
    """Optional identifying fields of a vehicle, each trimmed or None."""
    registration_number: Optional[str] = None
    name: Optional[str] = None
    external_id: Optional[str] = None

    MAX_REGISTRATION_LENGTH = 32
    MAX_NAME_LENGTH = 128
    MAX_EXTERNAL_ID_LENGTH = 128

    def __post_init__(self) -> None:
        object.__setattr__(self, "registration_number", normalize_or_none(self.registration_number))
        object.__setattr__(self, "name", normalize_or_none(self.name))
        object.__setattr__(self, "external_id", normalize_or_none(self.external_id))


@dataclass(frozen=True)
class Tenant:
    id: str
    name: str
    created_at_utc: datetime

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Tenant id is required")
        if not self.name or not self.name.strip():
            raise ValueError("Tenant name is required")
        object.__setattr__(self, "name", self.name.strip())
        object.__setattr__(self, "created_at_utc", require_utc("created_at_utc", self.created_at_utc))


@dataclass
class Vehicle:
    """
    Tenant-scoped vehicle with a small lifecycle state machine.

    ``ACTIVE`` and ``INACTIVE`` move freely between each other. Either can
    be decommissioned, and ``DECOMMISSIONED`` is terminal.
    """
    tenant_id: str
    id: str
    created_at_utc: datetime
    identity: VehicleIdentity = field(default_factory=VehicleIdentity)
    status: VehicleStatus = VehicleStatus.ACTIVE

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("tenant_id is required")
        if not self.id:
            raise ValueError("id is required")
        if self.identity is None:
            raise ValueError("identity is required")
        self.created_at_utc = require_utc("created_at_utc", self.created_at_utc)

    @property
    def is_decommissioned(self) -> bool:
        return self.status == VehicleStatus.DECOMMISSIONED

    def activate(self) -> None:
        if self.is_decommissioned:
            raise InvalidStateTransition(self.status, "activate")
        self.status = VehicleStatus.ACTIVE

    def set_inactive(self) -> None:
        if self.is_decommissioned:
            raise InvalidStateTransition(self.status, "inactivate")
        self.status = VehicleStatus.INACTIVE

    def decommission(self) -> None:
        self.status = VehicleStatus.DECOMMISSIONED

    def transition_to(self, status: VehicleStatus) -> None:
        """Apply a requested status through the matching lifecycle operation."""
        if status == VehicleStatus.ACTIVE:
            self.activate()
        elif status == VehicleStatus.INACTIVE:
            self.set_inactive()
        else:
            self.decommission()

    def update_identity(
        self,
        registration_number: Optional[str],
        name: Optional[str],
        external_id: Optional[str]
    ) -> None:
        self.identity = VehicleIdentity(registration_number, name, external_id)

    def rename(self, name: Optional[str]) -> None:
        self.identity = replace(self.identity, name=name)

    def set_registration(self, registration_number: Optional[str]) -> None:
        self.identity = replace(self.identity, registration_number=registration_number)

    def set_external_id(self, external_id: Optional[str]) -> None:
        self.identity = replace(self.identity, external_id=external_id)


@dataclass(frozen=True)
class VehicleLatestLocation:
    """
    Materialised latest location of one vehicle.

    Rows are replaced whole, never patched. ``route_schedule_id`` is owned
    elsewhere and carried across replacements.
    """
    tenant_id: str
    vehicle_id: str
    gps_fix_id: str
    device_time_utc: datetime
    received_at_utc: datetime
    device_sequence: int
    latitude: float
    longitude: float
    speed_kph: Optional[float] = None
    heading_degrees: Optional[float] = None
    accuracy_meters: Optional[float] = None
    route_schedule_id: Optional[str] = None
    updated_at_utc: Optional[datetime] = None

    def __post_init__(self) -> None:
        for name in ("tenant_id", "vehicle_id", "gps_fix_id"):
            if not getattr(self, name):
                raise TelemetryValidationError(
                    name, ValidationReason.EMPTY, f"{name} must not be empty"
                )
        object.__setattr__(self, "device_time_utc", require_utc("device_time_utc", self.device_time_utc))
        object.__setattr__(self, "received_at_utc", require_utc("received_at_utc", self.received_at_utc))
        if self.updated_at_utc is not None:
            object.__setattr__(self, "updated_at_utc", require_utc("updated_at_utc", self.updated_at_utc))
        sequence = 0 if self.device_sequence is None else self.device_sequence
        if sequence < 0:
            raise TelemetryValidationError(
                "device_sequence", ValidationReason.OUT_OF_RANGE,
                "device_sequence must be >= 0", sequence
            )
        object.__setattr__(self, "device_sequence", sequence)
        # Same bounds as the fix value types.
        Latitude(self.latitude)
        Longitude(self.longitude)
        SpeedKph.from_nullable(self.speed_kph)
        HeadingDegrees.from_nullable(self.heading_degrees)
        AccuracyMeters.from_nullable(self.accuracy_meters)

    @property
    def order_key(self) -> Tuple[datetime, int, datetime]:
        return (self.device_time_utc, self.device_sequence, self.received_at_utc)
