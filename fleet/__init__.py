"""
Vehicle management: CRUD, lifecycle status and latest-location reads.
"""

from fleet.schemas import (
    CreateVehicleRequest,
    LatestLocationResponse,
    PatchVehicleRequest,
    VehicleResponse,
)
from fleet.service import VehicleService

__all__ = [
    "CreateVehicleRequest",
    "LatestLocationResponse",
    "PatchVehicleRequest",
    "VehicleResponse",
    "VehicleService",
]
