"""
Vehicle management for a tenant's fleet.

Creates, reads, patches and deletes vehicles, applies lifecycle
transitions, and reports a vehicle's latest location with its staleness.
Every state change is written to the audit log.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from domain.errors import InvalidStateTransition
from domain.vehicles import Vehicle, VehicleIdentity, VehicleStatus
from errors.exceptions import (
    duplicate_registration_number,
    invalid_query,
    invalid_status_transition,
    validation_error,
    vehicle_not_found,
)
from fleet.schemas import (
    CreateVehicleRequest,
    LatestLocationResponse,
    PatchVehicleRequest,
)
from ingestion.preconditions import parse_vehicle_id
from storage.base import DuplicateRegistrationError, TrackingStore
from telemetry.service import TelemetryService, get_telemetry_service

logger = logging.getLogger(__name__)

MIN_STALE_AFTER_SECONDS = 1
MAX_STALE_AFTER_SECONDS = 86400

_IDENTITY_FIELDS = ("registration_number", "name", "external_id")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VehicleService:
    """
    Tenant-scoped vehicle operations.

    Args:
        store: Tracking store holding vehicles and latest locations
        clock: Returns the current UTC time
        telemetry: Telemetry service for audit events (global one if omitted)
        default_stale_after_seconds: Staleness threshold used when the
            caller does not give one
    """

    def __init__(
        self,
        store: TrackingStore,
        clock: Callable[[], datetime] = _utc_now,
        telemetry: Optional[TelemetryService] = None,
        default_stale_after_seconds: int = 300
    ):
        self.store = store
        self.clock = clock
        self.telemetry = telemetry or get_telemetry_service()
        self.default_stale_after_seconds = default_stale_after_seconds

    def _audit(self, tenant_id: str, vehicle_id: str, action: str, details: Optional[Dict[str, Any]] = None) -> None:
        if self.telemetry:
            self.telemetry.log_audit_event(
                event_type="vehicle_lifecycle",
                tenant_id=tenant_id,
                resource_type="vehicle",
                resource_id=vehicle_id,
                action=action,
                details=details,
            )

    async def _load(self, tenant_id: str, vehicle_id: str) -> Vehicle:
        canonical_id = parse_vehicle_id(vehicle_id)
        vehicle = None
        if canonical_id is not None:
            vehicle = await self.store.get_vehicle(tenant_id, canonical_id)
        if vehicle is None:
            raise vehicle_not_found(vehicle_id)
        return vehicle

    async def create(self, tenant_id: str, request: CreateVehicleRequest) -> Vehicle:
        """
        Register a new active vehicle.

        Raises:
            AppException: duplicate_registration_number when another
                vehicle of the tenant holds the registration number
        """
        vehicle = Vehicle(
            tenant_id=tenant_id,
            id=str(uuid.uuid4()),
            created_at_utc=self.clock(),
            identity=VehicleIdentity(
                registration_number=request.registration_number,
                name=request.name,
                external_id=request.external_id,
            ),
        )
        try:
            await self.store.add_vehicle(vehicle)
        except DuplicateRegistrationError as e:
            raise duplicate_registration_number(e.registration_number) from e

        logger.info(
            "Vehicle created",
            extra={"extra_data": {"vehicle_id": vehicle.id}}
        )
        self._audit(tenant_id, vehicle.id, "create", {
            "registration_number": vehicle.identity.registration_number,
        })
        return vehicle

    async def get(self, tenant_id: str, vehicle_id: str) -> Vehicle:
        return await self._load(tenant_id, vehicle_id)

    async def update(self, tenant_id: str, vehicle_id: str, request: PatchVehicleRequest) -> Vehicle:
        """
        Apply the fields present in ``request`` to the vehicle.

        Identity fields sent as null are cleared. A ``status`` drives the
        lifecycle through activate, set_inactive or decommission. Nothing
        is saved if any part of the patch fails.

        Raises:
            AppException: vehicle_not_found, validation_error for a null
                status, invalid_status_transition when leaving
                decommissioned, or duplicate_registration_number
        """
        vehicle = await self._load(tenant_id, vehicle_id)
        sent = request.model_fields_set
        changes: Dict[str, Any] = {}

        identity_changes = {name: getattr(request, name) for name in _IDENTITY_FIELDS if name in sent}
        if identity_changes:
            current = vehicle.identity
            vehicle.update_identity(
                identity_changes.get("registration_number", current.registration_number),
                identity_changes.get("name", current.name),
                identity_changes.get("external_id", current.external_id),
            )
            changes.update(identity_changes)

        if "status" in sent:
            if request.status is None:
                raise validation_error("status must not be null", details={"field": "status"})
            previous = vehicle.status
            try:
                vehicle.transition_to(VehicleStatus[request.status.upper()])
            except InvalidStateTransition as e:
                raise invalid_status_transition(str(e), details={
                    "current_status": previous.name.lower(),
                    "requested_status": request.status,
                }) from e
            changes["status"] = request.status

        if not changes:
            return vehicle

        try:
            await self.store.save_vehicle(vehicle)
        except DuplicateRegistrationError as e:
            raise duplicate_registration_number(e.registration_number) from e

        if "status" in changes:
            self._audit(tenant_id, vehicle.id, "status_change", {"status": changes["status"]})
        identity_details = {k: v for k, v in changes.items() if k != "status"}
        if identity_details:
            self._audit(tenant_id, vehicle.id, "identity_update", identity_details)
        return vehicle

    async def delete(self, tenant_id: str, vehicle_id: str) -> None:
        """Delete a vehicle together with its fixes and latest location."""
        canonical_id = parse_vehicle_id(vehicle_id)
        if canonical_id is None or not await self.store.delete_vehicle(tenant_id, canonical_id):
            raise vehicle_not_found(vehicle_id)
        self._audit(tenant_id, canonical_id, "delete")

    def _parse_stale_after(self, raw: Optional[str]) -> int:
        if raw is None:
            return self.default_stale_after_seconds
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise invalid_query("staleAfterSeconds must be an integer")
        if not MIN_STALE_AFTER_SECONDS <= value <= MAX_STALE_AFTER_SECONDS:
            raise invalid_query(
                f"staleAfterSeconds must be between {MIN_STALE_AFTER_SECONDS} "
                f"and {MAX_STALE_AFTER_SECONDS}"
            )
        return value

    async def get_latest_location(
        self,
        tenant_id: str,
        vehicle_id: str,
        stale_after_seconds: Optional[str] = None
    ) -> Optional[LatestLocationResponse]:
        """
        Latest location of a vehicle with its age.

        Args:
            tenant_id: Owning tenant
            vehicle_id: Vehicle id from the route
            stale_after_seconds: Raw query value, 1..86400

        Returns:
            The latest location, or None when the vehicle has none yet

        Raises:
            AppException: invalid_query for a bad threshold, vehicle_not_found
        """
        threshold = self._parse_stale_after(stale_after_seconds)
        vehicle = await self._load(tenant_id, vehicle_id)

        snapshot = await self.store.get_latest_location(tenant_id, vehicle.id)
        if snapshot is None:
            return None

        age = (self.clock() - snapshot.received_at_utc).total_seconds()
        seconds_since = max(0, math.floor(age))
        return LatestLocationResponse.from_snapshot(
            snapshot,
            seconds_since_last_update=seconds_since,
            is_stale=seconds_since > threshold,
        )
