"""
Unit tests for InMemoryTrackingStore.
"""
import asyncio

import pytest

from domain.policy import create_snapshot, should_replace
from domain.vehicles import Vehicle, VehicleIdentity
from storage.base import DuplicateRegistrationError
from support import NOW, OTHER_TENANT_ID, TENANT_ID, VEHICLE_A, VEHICLE_B, make_fix, utc


class TestTenantsAndVehicles:

    @pytest.mark.asyncio
    async def test_tenant_exists(self, memory_store):
        assert await memory_store.tenant_exists(TENANT_ID)
        assert not await memory_store.tenant_exists("unknown")

    @pytest.mark.asyncio
    async def test_get_vehicle_returns_copy(self, memory_store, add_vehicle):
        await add_vehicle(VEHICLE_A)
        copy = await memory_store.get_vehicle(TENANT_ID, VEHICLE_A)
        copy.decommission()
        stored = await memory_store.get_vehicle(TENANT_ID, VEHICLE_A)
        assert not stored.is_decommissioned

    @pytest.mark.asyncio
    async def test_vehicles_are_tenant_scoped(self, memory_store, add_vehicle):
        await add_vehicle(VEHICLE_A)
        assert await memory_store.get_vehicle(OTHER_TENANT_ID, VEHICLE_A) is None
        assert await memory_store.existing_vehicle_ids(OTHER_TENANT_ID, [VEHICLE_A]) == set()

    @pytest.mark.asyncio
    async def test_existing_vehicle_ids(self, memory_store, add_vehicle):
        await add_vehicle(VEHICLE_A)
        found = await memory_store.existing_vehicle_ids(TENANT_ID, [VEHICLE_A, VEHICLE_B, VEHICLE_A])
        assert found == {VEHICLE_A}

    @pytest.mark.asyncio
    async def test_duplicate_registration_within_tenant(self, memory_store, add_vehicle):
        await add_vehicle(VEHICLE_A, registration_number="AB-1")
        with pytest.raises(DuplicateRegistrationError):
            await add_vehicle(VEHICLE_B, registration_number=" AB-1 ")

    @pytest.mark.asyncio
    async def test_same_registration_in_other_tenant_is_allowed(self, memory_store, add_vehicle):
        await add_vehicle(VEHICLE_A, registration_number="AB-1")
        await add_vehicle(VEHICLE_B, tenant_id=OTHER_TENANT_ID, registration_number="AB-1")

    @pytest.mark.asyncio
    async def test_save_vehicle_checks_registration(self, memory_store, add_vehicle):
        await add_vehicle(VEHICLE_A, registration_number="AB-1")
        other = await add_vehicle(VEHICLE_B)
        other.identity = VehicleIdentity(registration_number="AB-1")
        with pytest.raises(DuplicateRegistrationError):
            await memory_store.save_vehicle(other)

    @pytest.mark.asyncio
    async def test_save_unknown_vehicle(self, memory_store):
        with pytest.raises(KeyError):
            await memory_store.save_vehicle(Vehicle(tenant_id=TENANT_ID, id=VEHICLE_A, created_at_utc=NOW))

    @pytest.mark.asyncio
    async def test_delete_cascades(self, memory_store, add_vehicle):
        await add_vehicle(VEHICLE_A)
        fix = make_fix(VEHICLE_A, utc(12))
        async with memory_store.unit_of_work(TENANT_ID, [VEHICLE_A]) as uow:
            uow.add_fix(fix)
            uow.replace_latest(create_snapshot(TENANT_ID, VEHICLE_A, fix, None, NOW))

        assert await memory_store.delete_vehicle(TENANT_ID, VEHICLE_A) is True
        assert await memory_store.get_fixes(TENANT_ID, VEHICLE_A) == []
        assert await memory_store.get_latest_location(TENANT_ID, VEHICLE_A) is None
        assert await memory_store.delete_vehicle(TENANT_ID, VEHICLE_A) is False

    @pytest.mark.asyncio
    async def test_delete_releases_vehicle_lock(self, memory_store, add_vehicle):
        await add_vehicle(VEHICLE_A)
        async with memory_store.unit_of_work(TENANT_ID, [VEHICLE_A]) as uow:
            uow.add_fix(make_fix(VEHICLE_A, utc(12)))
        assert (TENANT_ID, VEHICLE_A) in memory_store._locks

        await memory_store.delete_vehicle(TENANT_ID, VEHICLE_A)
        await memory_store.delete_vehicle(TENANT_ID, VEHICLE_B)

        assert memory_store._locks == {}


class TestUnitOfWork:

    @pytest.mark.asyncio
    async def test_commit_on_clean_exit(self, memory_store):
        fix = make_fix(VEHICLE_A, utc(12))
        async with memory_store.unit_of_work(TENANT_ID, [VEHICLE_A]) as uow:
            uow.add_fix(fix)
            uow.replace_latest(create_snapshot(TENANT_ID, VEHICLE_A, fix, None, NOW))
            # staged writes are invisible until commit
            assert await memory_store.get_fixes(TENANT_ID, VEHICLE_A) == []

        assert await memory_store.get_fixes(TENANT_ID, VEHICLE_A) == [fix]
        assert (await memory_store.get_latest_location(TENANT_ID, VEHICLE_A)).gps_fix_id == fix.id

    @pytest.mark.asyncio
    async def test_error_discards_everything(self, memory_store):
        with pytest.raises(RuntimeError):
            async with memory_store.unit_of_work(TENANT_ID, [VEHICLE_A, VEHICLE_B]) as uow:
                uow.add_fix(make_fix(VEHICLE_A, utc(12)))
                uow.add_fix(make_fix(VEHICLE_B, utc(12)))
                raise RuntimeError("boom")

        assert await memory_store.get_fixes(TENANT_ID, VEHICLE_A) == []
        assert await memory_store.get_fixes(TENANT_ID, VEHICLE_B) == []

    @pytest.mark.asyncio
    async def test_scope_is_enforced(self, memory_store):
        async with memory_store.unit_of_work(TENANT_ID, [VEHICLE_A]) as uow:
            with pytest.raises(ValueError):
                uow.add_fix(make_fix(VEHICLE_B, utc(12)))
            with pytest.raises(ValueError):
                uow.add_fix(make_fix(VEHICLE_A, utc(12), tenant_id=OTHER_TENANT_ID))
            with pytest.raises(ValueError):
                await uow.get_latest(VEHICLE_B)

    @pytest.mark.asyncio
    async def test_cancellation_before_commit_leaves_nothing(self, memory_store):
        entered = asyncio.Event()

        async def slow_ingest():
            async with memory_store.unit_of_work(TENANT_ID, [VEHICLE_A]) as uow:
                uow.add_fix(make_fix(VEHICLE_A, utc(12)))
                entered.set()
                await asyncio.sleep(10)

        task = asyncio.create_task(slow_ingest())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await memory_store.get_fixes(TENANT_ID, VEHICLE_A) == []

    @pytest.mark.asyncio
    async def test_same_vehicle_read_compare_replace_is_serialized(self, memory_store):
        """Two racing writers never leave the older fix as the snapshot."""
        newer = make_fix(VEHICLE_A, utc(12, 1), fix_id="newer")
        older = make_fix(VEHICLE_A, utc(12, 0), fix_id="older")

        async def ingest(fix, pause):
            async with memory_store.unit_of_work(TENANT_ID, [VEHICLE_A]) as uow:
                current = await uow.get_latest(VEHICLE_A)
                await asyncio.sleep(pause)
                uow.add_fix(fix)
                if should_replace(current, fix):
                    uow.replace_latest(create_snapshot(TENANT_ID, VEHICLE_A, fix, None, NOW))

        await asyncio.gather(ingest(newer, 0.02), ingest(older, 0))

        latest = await memory_store.get_latest_location(TENANT_ID, VEHICLE_A)
        assert latest.gps_fix_id == "newer"
        assert len(await memory_store.get_fixes(TENANT_ID, VEHICLE_A)) == 2

    @pytest.mark.asyncio
    async def test_different_vehicles_do_not_block(self, memory_store):
        order = []

        async def hold(vehicle_id, pause):
            async with memory_store.unit_of_work(TENANT_ID, [vehicle_id]):
                order.append(f"start-{vehicle_id}")
                await asyncio.sleep(pause)
                order.append(f"end-{vehicle_id}")

        await asyncio.gather(hold(VEHICLE_A, 0.05), hold(VEHICLE_B, 0))

        assert order.index(f"start-{VEHICLE_B}") < order.index(f"end-{VEHICLE_A}")
