"""
Vehicle management endpoints.

Every route acts for the tenant resolved from ``X-Tenant-Id`` and
answers ``missing_tenant`` without one.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from fleet.schemas import (
    CreateVehicleRequest,
    LatestLocationResponse,
    PatchVehicleRequest,
    VehicleResponse,
)
from fleet.service import VehicleService
from middleware.tenant import require_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


def get_vehicle_service(request: Request) -> VehicleService:
    return request.app.state.vehicle_service


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=VehicleResponse,
    response_model_by_alias=True,
)
async def create_vehicle(
    body: CreateVehicleRequest,
    tenant_id: str = Depends(require_tenant_id),
    service: VehicleService = Depends(get_vehicle_service),
):
    vehicle = await service.create(tenant_id, body)
    return VehicleResponse.from_vehicle(vehicle)


@router.get("/{vehicle_id}", response_model=VehicleResponse, response_model_by_alias=True)
async def get_vehicle(
    vehicle_id: str,
    tenant_id: str = Depends(require_tenant_id),
    service: VehicleService = Depends(get_vehicle_service),
):
    vehicle = await service.get(tenant_id, vehicle_id)
    return VehicleResponse.from_vehicle(vehicle)


@router.patch("/{vehicle_id}", response_model=VehicleResponse, response_model_by_alias=True)
async def patch_vehicle(
    vehicle_id: str,
    body: PatchVehicleRequest,
    tenant_id: str = Depends(require_tenant_id),
    service: VehicleService = Depends(get_vehicle_service),
):
    """
    Partially update a vehicle.

    Fields left out of the body are untouched; ``null`` clears a string
    field. ``status`` moves the vehicle through its lifecycle and cannot
    leave ``decommissioned``.
    """
    vehicle = await service.update(tenant_id, vehicle_id, body)
    return VehicleResponse.from_vehicle(vehicle)


@router.delete("/{vehicle_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vehicle(
    vehicle_id: str,
    tenant_id: str = Depends(require_tenant_id),
    service: VehicleService = Depends(get_vehicle_service),
):
    await service.delete(tenant_id, vehicle_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{vehicle_id}/latest-location",
    response_model=LatestLocationResponse,
    response_model_by_alias=True,
    responses={204: {"description": "The vehicle has no location yet"}},
)
async def get_latest_location(
    vehicle_id: str,
    stale_after_seconds: Optional[str] = Query(default=None, alias="staleAfterSeconds"),
    tenant_id: str = Depends(require_tenant_id),
    service: VehicleService = Depends(get_vehicle_service),
):
    """
    Latest known location of a vehicle.

    ``isStale`` is true once more than ``staleAfterSeconds`` (default 300)
    have passed since the location was received.
    """
    location = await service.get_latest_location(tenant_id, vehicle_id, stale_after_seconds)
    if location is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return location
