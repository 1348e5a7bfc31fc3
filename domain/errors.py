"""
Domain error types for GeoTrack.

Validation failures raised while constructing value types and entities are
kept distinct from lifecycle violations so callers can map them to
different API outcomes.
"""

from enum import Enum
from typing import Any, Optional


class ValidationReason(str, Enum):
    """Why a telemetry value was rejected."""
    NAN = "nan"
    INFINITE = "infinite"
    OUT_OF_RANGE = "out_of_range"
    EMPTY = "empty"
    TOO_LONG = "too_long"
    NOT_INTEGER = "not_integer"
    REQUIRED = "required"
    NOT_UTC = "not_utc"


class DomainError(Exception):
    """Base class for errors raised by the domain layer."""


class TelemetryValidationError(DomainError, ValueError):
    """
    Raised when a raw value cannot be turned into a valid domain value.

    Attributes:
        field: Name of the offending field (e.g. "latitude")
        reason: The ValidationReason describing the failure
        value: The raw value that was rejected
    """

    def __init__(
        self,
        field: str,
        reason: ValidationReason,
        message: str,
        value: Optional[Any] = None
    ):
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"TelemetryValidationError(field={self.field!r}, "
            f"reason={self.reason.value!r}, message={str(self)!r})"
        )


class InvalidStateTransition(DomainError):
    """
    Raised when a lifecycle operation is not allowed from the current state.

    This is a state-machine violation, not malformed input.
    """

    def __init__(self, current: Any, requested: str, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        current_name = getattr(current, "name", str(current)).lower()
        super().__init__(
            message or f"Cannot {requested} a vehicle that is {current_name}"
        )
