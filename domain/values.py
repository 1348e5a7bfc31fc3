"""
Telemetry value types.

Each type is an immutable dataclass that validates itself on construction,
so an out-of-range instance cannot exist. ``from_value`` is the validating
factory used by the ingestion path; ``from_nullable`` maps an absent input
to ``None`` without validating anything.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Optional

from domain.errors import TelemetryValidationError, ValidationReason


def _finite(field: str, raw: Any) -> float:
    """Coerce a raw number to float, rejecting NaN and infinities."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise TypeError(f"{field} must be a real number, got {type(raw).__name__}")
    value = float(raw)
    if math.isnan(value):
        raise TelemetryValidationError(
            field, ValidationReason.NAN, f"{field} must not be NaN", raw
        )
    if math.isinf(value):
        raise TelemetryValidationError(
            field, ValidationReason.INFINITE, f"{field} must be finite", raw
        )
    return value


@dataclass(frozen=True)
class _Measure:
    """
    Base for bounded floating point measurements.

    Subclasses only declare their bounds; validation lives here.
    """
    value: float

    field_name: ClassVar[str] = "value"
    minimum: ClassVar[Optional[float]] = None
    maximum: ClassVar[Optional[float]] = None
    maximum_exclusive: ClassVar[bool] = False

    def __post_init__(self) -> None:
        value = _finite(self.field_name, self.value)
        too_low = self.minimum is not None and value < self.minimum
        if self.maximum is None:
            too_high = False
        elif self.maximum_exclusive:
            too_high = value >= self.maximum
        else:
            too_high = value > self.maximum
        if too_low or too_high:
            raise TelemetryValidationError(
                self.field_name,
                ValidationReason.OUT_OF_RANGE,
                f"{self.field_name} must be {self._describe_range()}, got {value}",
                value,
            )
        object.__setattr__(self, "value", value)

    @classmethod
    def _describe_range(cls) -> str:
        if cls.minimum is not None and cls.maximum is not None:
            closing = ")" if cls.maximum_exclusive else "]"
            return f"in range [{cls.minimum:g}, {cls.maximum:g}{closing}"
        if cls.minimum is not None:
            return f">= {cls.minimum:g}"
        return "finite"

    @classmethod
    def from_value(cls, raw: Any):
        return cls(raw)

    @classmethod
    def from_nullable(cls, raw: Any):
        if raw is None:
            return None
        return cls(raw)

    def __float__(self) -> float:
        return self.value


class Latitude(_Measure):
    """Latitude in decimal degrees, [-90, 90]."""
    field_name = "latitude"
    minimum = -90.0
    maximum = 90.0


class Longitude(_Measure):
    """Longitude in decimal degrees, [-180, 180]."""
    field_name = "longitude"
    minimum = -180.0
    maximum = 180.0


class SpeedKph(_Measure):
    field_name = "speed_kph"
    minimum = 0.0


class AccuracyMeters(_Measure):
    """Estimated horizontal accuracy radius."""
    field_name = "accuracy_meters"
    minimum = 0.0


class OdometerKm(_Measure):
    field_name = "odometer_km"
    minimum = 0.0


class AltitudeMeters(_Measure):
    """Altitude; negative values are valid below sea level."""
    field_name = "altitude_meters"


class HeadingDegrees(_Measure):
    """
    Compass heading in the half-open range [0, 360).

    The default constructor is strict. ``wrap``, ``clamp`` and
    ``from_allow_360`` are explicit normalisation modes for callers that
    want them; the ingestion path never uses them.
    """
    field_name = "heading_degrees"
    minimum = 0.0
    maximum = 360.0
    maximum_exclusive = True

    CLAMP_MAX: ClassVar[float] = 359.999999

    @classmethod
    def from_allow_360(cls, raw: Any) -> "HeadingDegrees":
        """Accept exactly 360 as a synonym for north."""
        value = _finite(cls.field_name, raw)
        return cls(0.0 if value == 360.0 else value)

    @classmethod
    def wrap(cls, raw: Any) -> "HeadingDegrees":
        """Normalise any finite angle into [0, 360)."""
        value = _finite(cls.field_name, raw) % 360.0
        # -1e-17 % 360.0 rounds to 360.0
        if value >= 360.0:
            value = 0.0
        return cls(value)

    @classmethod
    def clamp(cls, raw: Any) -> "HeadingDegrees":
        value = _finite(cls.field_name, raw)
        if value < 0.0:
            return cls(0.0)
        if value >= 360.0:
            return cls(cls.CLAMP_MAX)
        return cls(value)

    @classmethod
    def try_from(cls, raw: Any) -> Optional["HeadingDegrees"]:
        """Return a heading, or None when the raw value is not strictly valid."""
        try:
            return cls(raw)
        except (TelemetryValidationError, TypeError):
            return None

    def to_radians(self) -> float:
        return math.radians(self.value)

    def smallest_difference_to(self, other: "HeadingDegrees") -> float:
        """Smallest angle between two headings, in [0, 180]."""
        diff = abs(self.value - other.value) % 360.0
        return 360.0 - diff if diff > 180.0 else diff

    def add_wrapped(self, delta_degrees: float) -> "HeadingDegrees":
        return HeadingDegrees.wrap(self.value + delta_degrees)


HeadingDegrees.NORTH = HeadingDegrees(0.0)
HeadingDegrees.EAST = HeadingDegrees(90.0)
HeadingDegrees.SOUTH = HeadingDegrees(180.0)
HeadingDegrees.WEST = HeadingDegrees(270.0)


@dataclass(frozen=True, order=True)
class DeviceSequence:
    """
    Device-local monotonic counter, >= 0.

    Only ever used to break ties between fixes with the same device time.
    """
    value: int

    def __post_init__(self) -> None:
        raw = self.value
        if isinstance(raw, bool):
            raise TelemetryValidationError(
                "device_sequence", ValidationReason.NOT_INTEGER,
                "device_sequence must be an integer", raw
            )
        if isinstance(raw, float):
            if math.isnan(raw) or math.isinf(raw) or not raw.is_integer():
                raise TelemetryValidationError(
                    "device_sequence", ValidationReason.NOT_INTEGER,
                    "device_sequence must be an integer", raw
                )
            raw = int(raw)
        if not isinstance(raw, int):
            raise TypeError(f"device_sequence must be an integer, got {type(raw).__name__}")
        if raw < 0:
            raise TelemetryValidationError(
                "device_sequence", ValidationReason.OUT_OF_RANGE,
                f"device_sequence must be >= 0, got {raw}", raw
            )
        object.__setattr__(self, "value", raw)

    @classmethod
    def from_value(cls, raw: Any) -> "DeviceSequence":
        return cls(raw)

    @classmethod
    def from_nullable(cls, raw: Any) -> Optional["DeviceSequence"]:
        if raw is None:
            return None
        return cls(raw)

    def __int__(self) -> int:
        return self.value


@dataclass(frozen=True)
class CorrelationId:
    """Client supplied trace token: trimmed, non-empty, at most 128 characters."""
    value: str

    MAX_LENGTH: ClassVar[int] = 128

    def __post_init__(self) -> None:
        if self.value is None:
            raise TelemetryValidationError(
                "correlation_id", ValidationReason.REQUIRED, "correlation_id is required"
            )
        if not isinstance(self.value, str):
            raise TypeError("correlation_id must be a string")
        trimmed = self.value.strip()
        if not trimmed:
            raise TelemetryValidationError(
                "correlation_id", ValidationReason.EMPTY,
                "correlation_id must not be empty", self.value
            )
        if len(trimmed) > self.MAX_LENGTH:
            raise TelemetryValidationError(
                "correlation_id", ValidationReason.TOO_LONG,
                f"correlation_id must be {self.MAX_LENGTH} characters or fewer",
                self.value
            )
        object.__setattr__(self, "value", trimmed)

    @classmethod
    def from_value(cls, raw: Any) -> "CorrelationId":
        return cls(raw)

    @classmethod
    def from_nullable(cls, raw: Any) -> Optional["CorrelationId"]:
        if raw is None:
            return None
        return cls(raw)

    def __str__(self) -> str:
        return self.value


def is_utc(value: Any) -> bool:
    """True when ``value`` is a timezone-aware datetime at UTC offset zero."""
    if not isinstance(value, datetime) or value.tzinfo is None:
        return False
    return value.utcoffset() == timedelta(0)


def require_utc(field: str, value: Any) -> datetime:
    """
    Validate that a timestamp is explicitly UTC.

    Naive datetimes are rejected rather than assumed to be UTC.

    Returns:
        The same instant with ``tzinfo=timezone.utc``

    Raises:
        TelemetryValidationError: If the timestamp is missing, naive, or
            carries a non-zero offset
    """
    if value is None:
        raise TelemetryValidationError(field, ValidationReason.REQUIRED, f"{field} is required")
    if not is_utc(value):
        raise TelemetryValidationError(
            field, ValidationReason.NOT_UTC, f"{field} must be UTC", value
        )
    return value.astimezone(timezone.utc)
