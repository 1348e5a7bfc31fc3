"""
Storage contract for tenants, vehicles, the fix log and latest locations.

Reads and vehicle administration are plain async methods. Ingestion
writes go through a unit of work: fixes and snapshot replacements are
staged on it and applied together when the ``async with`` block exits
cleanly. An exception or cancellation inside the block discards the
staged writes.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Iterable, List, Optional, Set

from domain.fixes import GpsFix
from domain.vehicles import Tenant, Vehicle, VehicleLatestLocation


class StorageError(Exception):
    """Base class for storage-level failures."""


class DuplicateRegistrationError(StorageError):
    """A registration number is already taken inside the tenant."""

    def __init__(self, tenant_id: str, registration_number: str):
        self.tenant_id = tenant_id
        self.registration_number = registration_number
        super().__init__(
            f"Registration number '{registration_number}' already exists for tenant {tenant_id}"
        )


class ConcurrencyConflict(StorageError):
    """A latest-location row changed between read and replace."""

    def __init__(self, tenant_id: str, vehicle_id: str):
        self.tenant_id = tenant_id
        self.vehicle_id = vehicle_id
        super().__init__(
            f"Latest location of vehicle {vehicle_id} changed concurrently"
        )


class RollbackIncomplete(StorageError):
    """A failed commit could not undo every fix it had already written."""

    def __init__(self, tenant_id: str, fix_ids: List[str]):
        self.tenant_id = tenant_id
        self.fix_ids = fix_ids
        super().__init__(
            f"Rollback left {len(fix_ids)} fix(es) behind for tenant {tenant_id}"
        )


class UnitOfWork(ABC):
    """
    Staged ingestion writes for one tenant and a fixed set of vehicles.

    Only the vehicles named when the unit of work was opened may be read
    or written through it.
    """

    def __init__(self, tenant_id: str, vehicle_ids: Iterable[str]):
        self.tenant_id = tenant_id
        self.vehicle_ids = frozenset(vehicle_ids)
        self._fixes: List[GpsFix] = []
        self._snapshots: dict = {}

    def _check_scope(self, tenant_id: str, vehicle_id: str) -> None:
        if tenant_id != self.tenant_id:
            raise ValueError("unit of work is bound to a different tenant")
        if vehicle_id not in self.vehicle_ids:
            raise ValueError(f"vehicle {vehicle_id} is not part of this unit of work")

    @abstractmethod
    async def get_latest(self, vehicle_id: str) -> Optional[VehicleLatestLocation]:
        """Current committed snapshot of a vehicle, or None."""

    def add_fix(self, fix: GpsFix) -> None:
        """Stage a fix for the append-only log."""
        self._check_scope(fix.tenant_id, fix.vehicle_id)
        self._fixes.append(fix)

    def replace_latest(self, snapshot: VehicleLatestLocation) -> None:
        """Stage a whole-row replacement of a vehicle's snapshot."""
        self._check_scope(snapshot.tenant_id, snapshot.vehicle_id)
        self._snapshots[snapshot.vehicle_id] = snapshot

    @property
    def staged_fixes(self) -> List[GpsFix]:
        return list(self._fixes)

    @property
    def staged_snapshots(self) -> List[VehicleLatestLocation]:
        return list(self._snapshots.values())


class TrackingStore(ABC):
    """Persistence for the ingestion and fleet services."""

    async def setup(self) -> None:
        """Prepare the backend (create indices, open connections)."""

    async def close(self) -> None:
        """Release backend resources."""

    # Tenants

    @abstractmethod
    async def add_tenant(self, tenant: Tenant) -> None:
        """Register a tenant; registering an existing id is a no-op."""

    @abstractmethod
    async def tenant_exists(self, tenant_id: str) -> bool:
        ...

    # Vehicles

    @abstractmethod
    async def add_vehicle(self, vehicle: Vehicle) -> None:
        """
        Insert a new vehicle.

        Raises:
            DuplicateRegistrationError: If the registration number is taken
        """

    @abstractmethod
    async def get_vehicle(self, tenant_id: str, vehicle_id: str) -> Optional[Vehicle]:
        ...

    @abstractmethod
    async def save_vehicle(self, vehicle: Vehicle) -> None:
        """
        Overwrite an existing vehicle.

        Raises:
            DuplicateRegistrationError: If the new registration number is taken
        """

    @abstractmethod
    async def delete_vehicle(self, tenant_id: str, vehicle_id: str) -> bool:
        """Delete a vehicle with its fixes and snapshot. False if it did not exist."""

    @abstractmethod
    async def existing_vehicle_ids(self, tenant_id: str, vehicle_ids: Iterable[str]) -> Set[str]:
        """The subset of ``vehicle_ids`` that exist for the tenant, in one lookup."""

    # Fix log and latest location

    @abstractmethod
    async def get_latest_location(
        self,
        tenant_id: str,
        vehicle_id: str
    ) -> Optional[VehicleLatestLocation]:
        ...

    @abstractmethod
    async def get_fixes(self, tenant_id: str, vehicle_id: str) -> List[GpsFix]:
        """Logged fixes of a vehicle, oldest commit first."""

    @abstractmethod
    def unit_of_work(
        self,
        tenant_id: str,
        vehicle_ids: Iterable[str]
    ) -> AsyncContextManager[UnitOfWork]:
        """
        Open a unit of work over the given vehicles.

        Raises (on exit):
            ConcurrencyConflict: If a snapshot read through the unit of work
                changed before the commit
        """
