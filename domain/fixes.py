"""
GpsFix: one received telemetry sample for a vehicle.

A fix is built once per ingestion call, never mutated afterwards, and
appended to the fix log.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional, Tuple

from domain.errors import TelemetryValidationError, ValidationReason
from domain.values import (
    AccuracyMeters,
    AltitudeMeters,
    CorrelationId,
    DeviceSequence,
    HeadingDegrees,
    Latitude,
    Longitude,
    OdometerKm,
    SpeedKph,
    require_utc,
)


class TelemetrySource(str, Enum):
    DEVICE = "device"
    OTHER = "other"


class FixQuality(IntEnum):
    """Positioning quality reported by the receiver."""
    UNKNOWN = 0
    AUTONOMOUS = 1
    DIFFERENTIAL = 2
    RTK_FIXED = 3
    RTK_FLOAT = 4


@dataclass(frozen=True)
class GpsFix:
    """
    Immutable record of a single GPS fix.

    Use ``GpsFix.create`` to build one; it checks identifiers and the UTC
    contract on both timestamps.
    """
    id: str
    tenant_id: str
    vehicle_id: str
    latitude: Latitude
    longitude: Longitude
    device_time_utc: datetime
    received_at_utc: datetime
    correlation_id: CorrelationId
    source: TelemetrySource = TelemetrySource.DEVICE
    device_sequence: Optional[DeviceSequence] = None
    speed: Optional[SpeedKph] = None
    heading: Optional[HeadingDegrees] = None
    accuracy: Optional[AccuracyMeters] = None
    altitude: Optional[AltitudeMeters] = None
    odometer: Optional[OdometerKm] = None
    quality: FixQuality = FixQuality.UNKNOWN

    def __post_init__(self) -> None:
        for name in ("id", "tenant_id", "vehicle_id"):
            if not getattr(self, name):
                raise TelemetryValidationError(
                    name, ValidationReason.EMPTY, f"{name} must not be empty"
                )
        object.__setattr__(
            self, "device_time_utc", require_utc("device_time_utc", self.device_time_utc)
        )
        object.__setattr__(
            self, "received_at_utc", require_utc("received_at_utc", self.received_at_utc)
        )

    @classmethod
    def create(
        cls,
        *,
        id: str,
        tenant_id: str,
        vehicle_id: str,
        latitude: float,
        longitude: float,
        device_time_utc: datetime,
        received_at_utc: datetime,
        correlation_id: str,
        source: TelemetrySource = TelemetrySource.DEVICE,
        device_sequence: Optional[int] = None,
        speed_kph: Optional[float] = None,
        heading_degrees: Optional[float] = None,
        accuracy_meters: Optional[float] = None,
        altitude_meters: Optional[float] = None,
        odometer_km: Optional[float] = None,
        quality: FixQuality = FixQuality.UNKNOWN,
    ) -> "GpsFix":
        """
        Build a fix from raw values, validating each one through its value type.

        Raises:
            TelemetryValidationError: If any value is out of its domain
        """
        return cls(
            id=id,
            tenant_id=tenant_id,
            vehicle_id=vehicle_id,
            latitude=Latitude.from_value(latitude),
            longitude=Longitude.from_value(longitude),
            device_time_utc=device_time_utc,
            received_at_utc=received_at_utc,
            correlation_id=CorrelationId.from_value(correlation_id),
            source=source,
            device_sequence=DeviceSequence.from_nullable(device_sequence),
            speed=SpeedKph.from_nullable(speed_kph),
            heading=HeadingDegrees.from_nullable(heading_degrees),
            accuracy=AccuracyMeters.from_nullable(accuracy_meters),
            altitude=AltitudeMeters.from_nullable(altitude_meters),
            odometer=OdometerKm.from_nullable(odometer_km),
            quality=quality,
        )

    @property
    def sequence_or_zero(self) -> int:
        return self.device_sequence.value if self.device_sequence is not None else 0

    @property
    def order_key(self) -> Tuple[datetime, int, datetime]:
        """Sort key used by the latest-location policy."""
        return (self.device_time_utc, self.sequence_or_zero, self.received_at_utc)
