"""
Request and response models for GPS fix ingestion.

The models only describe the wire shape (JSON field names are camelCase).
Value ranges, the UTC requirement and correlation id rules are enforced
by the ingestion service and the domain value types, so each failure can
be reported with its own rejection code.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class GpsFixRequest(CamelModel):
    """
    One GPS fix as posted to ``POST /vehicles/{vehicleId}/gps-fixes``.

    Attributes:
        latitude: Degrees, checked against [-90, 90] by the domain
        longitude: Degrees, checked against [-180, 180] by the domain
        device_time_utc: Device timestamp; must carry a zero UTC offset
        device_sequence: Optional device-local counter used as a tie-breaker
        speed_kph: Optional speed, non-negative
        heading_degrees: Optional heading in [0, 360)
        accuracy_meters: Optional accuracy radius, non-negative
        altitude_meters: Optional altitude, any finite value
        odometer_km: Optional odometer reading, non-negative
        correlation_id: Client trace token, required and non-blank
    """
    latitude: float
    longitude: float
    device_time_utc: datetime
    device_sequence: Optional[int] = None
    speed_kph: Optional[float] = None
    heading_degrees: Optional[float] = None
    accuracy_meters: Optional[float] = None
    altitude_meters: Optional[float] = None
    odometer_km: Optional[float] = None
    correlation_id: Optional[str] = None


class BatchGpsFixItem(GpsFixRequest):
    """A fix inside a batch; carries its own vehicle id."""
    vehicle_id: Optional[str] = None


class BatchGpsFixRequest(CamelModel):
    """Body of ``POST /gps-fixes/batch``."""
    items: List[BatchGpsFixItem] = Field(default_factory=list)


class IngestGpsFixResponse(CamelModel):
    vehicle_id: str
    gps_fix_id: str
    device_time_utc: datetime
    received_at_utc: datetime
    is_latest_applied: bool


class BatchItemResultResponse(CamelModel):
    index: int
    vehicle_id: Optional[str] = None
    status: str
    gps_fix_id: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


class BatchIngestGpsFixesResponse(CamelModel):
    accepted_count: int
    rejected_count: int
    received_at_utc: datetime
    results: List[BatchItemResultResponse]
