"""
Precondition checks shared by single and batch ingestion.

Each check returns a Rejection (stable code plus message) or None. The
single path turns the first rejection into an error response; the batch
path records it against the item and moves on.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from domain.values import is_utc
from errors.codes import ErrorCode, get_default_message
from errors.exceptions import AppException
from ingestion.schemas import GpsFixRequest

HEADING_MAX_EXCLUSIVE = 360.0


@dataclass(frozen=True)
class Rejection:
    code: ErrorCode
    message: str

    @classmethod
    def of(cls, code: ErrorCode, message: Optional[str] = None) -> "Rejection":
        return cls(code, message or get_default_message(code))

    def to_exception(self) -> AppException:
        return AppException(error_code=self.code, message=self.message)


def parse_vehicle_id(raw: Any) -> Optional[str]:
    """
    Canonical form of a vehicle id, or None when it is missing, not a
    UUID, or the nil UUID.
    """
    if raw is None:
        return None
    try:
        parsed = uuid.UUID(str(raw).strip())
    except ValueError:
        return None
    if parsed.int == 0:
        return None
    return str(parsed)


def check_vehicle_id(raw: Any) -> Optional[Rejection]:
    if parse_vehicle_id(raw) is None:
        return Rejection.of(ErrorCode.INVALID_VEHICLE)
    return None


def check_fix_payload(payload: GpsFixRequest) -> Optional[Rejection]:
    """
    Device time, heading and correlation id checks, in that order.

    Only headings at or above 360 are rejected here; negative headings
    are left to the HeadingDegrees value type.
    """
    if not is_utc(payload.device_time_utc):
        return Rejection.of(ErrorCode.INVALID_DEVICE_TIME)
    if payload.heading_degrees is not None and payload.heading_degrees >= HEADING_MAX_EXCLUSIVE:
        return Rejection.of(ErrorCode.INVALID_HEADING)
    if payload.correlation_id is None or not payload.correlation_id.strip():
        return Rejection.of(ErrorCode.MISSING_CORRELATION_ID)
    return None
