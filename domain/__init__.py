"""
Domain model for GeoTrack telemetry ingestion.

This package holds the validated value types, the GpsFix entity, the
vehicle aggregate and the latest-location policy. It has no framework or
storage dependencies.
"""

from domain.errors import (
    DomainError,
    InvalidStateTransition,
    TelemetryValidationError,
    ValidationReason,
)
from domain.fixes import FixQuality, GpsFix, TelemetrySource
from domain.policy import create_snapshot, fix_order_key, is_newer, should_replace
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
    is_utc,
    require_utc,
)
from domain.vehicles import (
    Tenant,
    Vehicle,
    VehicleIdentity,
    VehicleLatestLocation,
    VehicleStatus,
)

__all__ = [
    # Errors
    "DomainError",
    "InvalidStateTransition",
    "TelemetryValidationError",
    "ValidationReason",
    # Values
    "AccuracyMeters",
    "AltitudeMeters",
    "CorrelationId",
    "DeviceSequence",
    "HeadingDegrees",
    "Latitude",
    "Longitude",
    "OdometerKm",
    "SpeedKph",
    "is_utc",
    "require_utc",
    # Entities
    "FixQuality",
    "GpsFix",
    "TelemetrySource",
    "Tenant",
    "Vehicle",
    "VehicleIdentity",
    "VehicleLatestLocation",
    "VehicleStatus",
    # Policy
    "create_snapshot",
    "fix_order_key",
    "is_newer",
    "should_replace",
]
