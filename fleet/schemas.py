"""
Request and response models for vehicle management.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from domain.vehicles import Vehicle, VehicleIdentity, VehicleLatestLocation
from ingestion.schemas import CamelModel

VehicleStatusName = Literal["active", "inactive", "decommissioned"]


class CreateVehicleRequest(CamelModel):
    registration_number: Optional[str] = Field(
        default=None, max_length=VehicleIdentity.MAX_REGISTRATION_LENGTH
    )
    name: Optional[str] = Field(default=None, max_length=VehicleIdentity.MAX_NAME_LENGTH)
    external_id: Optional[str] = Field(
        default=None, max_length=VehicleIdentity.MAX_EXTERNAL_ID_LENGTH
    )


class PatchVehicleRequest(CreateVehicleRequest):
    """
    Partial vehicle update.

    Only fields present in the JSON body are applied (see
    ``model_fields_set``); an explicit null clears a string field.
    """
    status: Optional[VehicleStatusName] = None


class VehicleResponse(CamelModel):
    id: str
    registration_number: Optional[str] = None
    name: Optional[str] = None
    external_id: Optional[str] = None
    created_at_utc: datetime
    status: VehicleStatusName

    @classmethod
    def from_vehicle(cls, vehicle: Vehicle) -> "VehicleResponse":
        return cls(
            id=vehicle.id,
            registration_number=vehicle.identity.registration_number,
            name=vehicle.identity.name,
            external_id=vehicle.identity.external_id,
            created_at_utc=vehicle.created_at_utc,
            status=vehicle.status.name.lower(),
        )


class LatestLocationResponse(CamelModel):
    latitude: float
    longitude: float
    device_time_utc: datetime
    received_at_utc: datetime
    seconds_since_last_update: int
    is_stale: bool

    @classmethod
    def from_snapshot(
        cls,
        snapshot: VehicleLatestLocation,
        seconds_since_last_update: int,
        is_stale: bool
    ) -> "LatestLocationResponse":
        return cls(
            latitude=snapshot.latitude,
            longitude=snapshot.longitude,
            device_time_utc=snapshot.device_time_utc,
            received_at_utc=snapshot.received_at_utc,
            seconds_since_last_update=seconds_since_last_update,
            is_stale=is_stale,
        )
