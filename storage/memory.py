"""
In-memory tracking store.

Used in development and tests. Each (tenant, vehicle) pair has its own
asyncio.Lock; a unit of work takes the locks of its vehicles in sorted
order, so snapshot read-compare-replace is serialized per vehicle while
different vehicles proceed in parallel. Staged writes are applied in one
synchronous step at commit, which makes the commit atomic with respect
to every other coroutine.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

from domain.fixes import GpsFix
from domain.vehicles import Tenant, Vehicle, VehicleLatestLocation
from storage.base import DuplicateRegistrationError, TrackingStore, UnitOfWork

logger = logging.getLogger(__name__)

VehicleKey = Tuple[str, str]


class _MemoryUnitOfWork(UnitOfWork):

    def __init__(self, store: "InMemoryTrackingStore", tenant_id: str, vehicle_ids: Iterable[str]):
        super().__init__(tenant_id, vehicle_ids)
        self._store = store

    async def get_latest(self, vehicle_id: str) -> Optional[VehicleLatestLocation]:
        self._check_scope(self.tenant_id, vehicle_id)
        return self._store._latest.get((self.tenant_id, vehicle_id))

    def _commit(self) -> None:
        for fix in self._fixes:
            self._store._fixes[(fix.tenant_id, fix.vehicle_id)].append(fix)
        for snapshot in self._snapshots.values():
            self._store._latest[(snapshot.tenant_id, snapshot.vehicle_id)] = snapshot


class InMemoryTrackingStore(TrackingStore):
    """Process-local store backed by dictionaries."""

    def __init__(self):
        self._tenants: Dict[str, Tenant] = {}
        self._vehicles: Dict[VehicleKey, Vehicle] = {}
        self._fixes: Dict[VehicleKey, List[GpsFix]] = defaultdict(list)
        self._latest: Dict[VehicleKey, VehicleLatestLocation] = {}
        self._locks: Dict[VehicleKey, asyncio.Lock] = {}
        # guards registration uniqueness across vehicles of a tenant
        self._registry_lock = asyncio.Lock()

    def _lock_for(self, key: VehicleKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # Tenants

    async def add_tenant(self, tenant: Tenant) -> None:
        self._tenants.setdefault(tenant.id, tenant)

    async def tenant_exists(self, tenant_id: str) -> bool:
        return tenant_id in self._tenants

    # Vehicles

    def _registration_taken(self, vehicle: Vehicle) -> bool:
        registration = vehicle.identity.registration_number
        if registration is None:
            return False
        return any(
            other.tenant_id == vehicle.tenant_id
            and other.id != vehicle.id
            and other.identity.registration_number == registration
            for other in self._vehicles.values()
        )

    async def add_vehicle(self, vehicle: Vehicle) -> None:
        async with self._registry_lock:
            key = (vehicle.tenant_id, vehicle.id)
            if key in self._vehicles:
                raise ValueError(f"vehicle {vehicle.id} already exists")
            if self._registration_taken(vehicle):
                raise DuplicateRegistrationError(
                    vehicle.tenant_id, vehicle.identity.registration_number
                )
            self._vehicles[key] = replace(vehicle)

    async def get_vehicle(self, tenant_id: str, vehicle_id: str) -> Optional[Vehicle]:
        vehicle = self._vehicles.get((tenant_id, vehicle_id))
        return replace(vehicle) if vehicle is not None else None

    async def save_vehicle(self, vehicle: Vehicle) -> None:
        async with self._registry_lock:
            key = (vehicle.tenant_id, vehicle.id)
            if key not in self._vehicles:
                raise KeyError(f"vehicle {vehicle.id} does not exist")
            if self._registration_taken(vehicle):
                raise DuplicateRegistrationError(
                    vehicle.tenant_id, vehicle.identity.registration_number
                )
            self._vehicles[key] = replace(vehicle)

    async def delete_vehicle(self, tenant_id: str, vehicle_id: str) -> bool:
        key = (tenant_id, vehicle_id)
        async with self._lock_for(key):
            deleted = self._vehicles.pop(key, None) is not None
            if deleted:
                self._fixes.pop(key, None)
                self._latest.pop(key, None)
        # a unit of work queued on the lock keeps it alive
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            self._locks.pop(key, None)
        if not deleted:
            return False
        logger.debug(
            "Deleted vehicle with fixes and latest location",
            extra={"extra_data": {"tenant_id": tenant_id, "vehicle_id": vehicle_id}}
        )
        return True

    async def existing_vehicle_ids(self, tenant_id: str, vehicle_ids: Iterable[str]) -> Set[str]:
        return {vid for vid in set(vehicle_ids) if (tenant_id, vid) in self._vehicles}

    # Fix log and latest location

    async def get_latest_location(
        self,
        tenant_id: str,
        vehicle_id: str
    ) -> Optional[VehicleLatestLocation]:
        return self._latest.get((tenant_id, vehicle_id))

    async def get_fixes(self, tenant_id: str, vehicle_id: str) -> List[GpsFix]:
        return list(self._fixes.get((tenant_id, vehicle_id), ()))

    @asynccontextmanager
    async def unit_of_work(
        self,
        tenant_id: str,
        vehicle_ids: Iterable[str]
    ) -> AsyncIterator[UnitOfWork]:
        vehicle_ids = sorted(set(vehicle_ids))
        async with AsyncExitStack() as stack:
            # sorted acquisition order rules out lock-order deadlocks
            for vehicle_id in vehicle_ids:
                await stack.enter_async_context(self._lock_for((tenant_id, vehicle_id)))
            uow = _MemoryUnitOfWork(self, tenant_id, vehicle_ids)
            yield uow
            uow._commit()
