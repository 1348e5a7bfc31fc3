"""
Elasticsearch-backed tracking store.

Index layout:
- tenants: one document per tenant id
- vehicles: one document per ``<tenant>:<vehicle>``
- vehicle_registrations: one reservation per ``<tenant>:<registration>``,
  created with op_type=create so registration numbers stay unique
- gps_fixes: append-only fix log, one document per fix id
- vehicle_latest_locations: one document per ``<tenant>:<vehicle>``

Snapshots are replaced under optimistic concurrency control. A unit of
work remembers the ``_seq_no``/``_primary_term`` of every snapshot it
read and writes back with ``if_seq_no``/``if_primary_term`` (or
op_type=create when there was none). On a version conflict every write
already made by that commit is compensated and ConcurrencyConflict is
raised so the caller can re-run the unit of work.

Every call runs through a circuit breaker. Failures surface as
AppException with ``storage_unavailable`` or ``circuit_open``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

from elasticsearch import ConflictError, Elasticsearch, NotFoundError
from elasticsearch.helpers import BulkIndexError, bulk, scan

from domain.fixes import FixQuality, GpsFix, TelemetrySource
from domain.vehicles import Tenant, Vehicle, VehicleIdentity, VehicleLatestLocation, VehicleStatus
from errors.exceptions import AppException, circuit_open, storage_unavailable
from resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitOpenException
from resilience.retry import RetryConfig, retry_async
from storage.base import (
    ConcurrencyConflict,
    DuplicateRegistrationError,
    RollbackIncomplete,
    TrackingStore,
    UnitOfWork,
)
from telemetry.service import get_telemetry_service

logger = logging.getLogger(__name__)


def _doc_id(tenant_id: str, key: str) -> str:
    return f"{tenant_id}:{key}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# Document conversion

def vehicle_to_document(vehicle: Vehicle) -> Dict[str, Any]:
    return {
        "tenant_id": vehicle.tenant_id,
        "vehicle_id": vehicle.id,
        "registration_number": vehicle.identity.registration_number,
        "name": vehicle.identity.name,
        "external_id": vehicle.identity.external_id,
        "status": int(vehicle.status),
        "created_at_utc": _iso(vehicle.created_at_utc),
    }


def vehicle_from_document(source: Dict[str, Any]) -> Vehicle:
    return Vehicle(
        tenant_id=source["tenant_id"],
        id=source["vehicle_id"],
        created_at_utc=_parse(source["created_at_utc"]),
        identity=VehicleIdentity(
            registration_number=source.get("registration_number"),
            name=source.get("name"),
            external_id=source.get("external_id"),
        ),
        status=VehicleStatus(source["status"]),
    )


def fix_to_document(fix: GpsFix) -> Dict[str, Any]:
    return {
        "fix_id": fix.id,
        "tenant_id": fix.tenant_id,
        "vehicle_id": fix.vehicle_id,
        "location": {"lat": fix.latitude.value, "lon": fix.longitude.value},
        "device_time_utc": _iso(fix.device_time_utc),
        "received_at_utc": _iso(fix.received_at_utc),
        "correlation_id": str(fix.correlation_id),
        "source": fix.source.value,
        "device_sequence": fix.device_sequence.value if fix.device_sequence is not None else None,
        "speed_kph": fix.speed.value if fix.speed is not None else None,
        "heading_degrees": fix.heading.value if fix.heading is not None else None,
        "accuracy_meters": fix.accuracy.value if fix.accuracy is not None else None,
        "altitude_meters": fix.altitude.value if fix.altitude is not None else None,
        "odometer_km": fix.odometer.value if fix.odometer is not None else None,
        "quality": int(fix.quality),
    }


def fix_from_document(source: Dict[str, Any]) -> GpsFix:
    return GpsFix.create(
        id=source["fix_id"],
        tenant_id=source["tenant_id"],
        vehicle_id=source["vehicle_id"],
        latitude=source["location"]["lat"],
        longitude=source["location"]["lon"],
        device_time_utc=_parse(source["device_time_utc"]),
        received_at_utc=_parse(source["received_at_utc"]),
        correlation_id=source["correlation_id"],
        source=TelemetrySource(source.get("source", TelemetrySource.DEVICE.value)),
        device_sequence=source.get("device_sequence"),
        speed_kph=source.get("speed_kph"),
        heading_degrees=source.get("heading_degrees"),
        accuracy_meters=source.get("accuracy_meters"),
        altitude_meters=source.get("altitude_meters"),
        odometer_km=source.get("odometer_km"),
        quality=FixQuality(source.get("quality", 0)),
    )


def snapshot_to_document(snapshot: VehicleLatestLocation) -> Dict[str, Any]:
    return {
        "tenant_id": snapshot.tenant_id,
        "vehicle_id": snapshot.vehicle_id,
        "gps_fix_id": snapshot.gps_fix_id,
        "device_time_utc": _iso(snapshot.device_time_utc),
        "received_at_utc": _iso(snapshot.received_at_utc),
        "device_sequence": snapshot.device_sequence,
        "location": {"lat": snapshot.latitude, "lon": snapshot.longitude},
        "speed_kph": snapshot.speed_kph,
        "heading_degrees": snapshot.heading_degrees,
        "accuracy_meters": snapshot.accuracy_meters,
        "route_schedule_id": snapshot.route_schedule_id,
        "updated_at_utc": _iso(snapshot.updated_at_utc),
    }


def snapshot_from_document(source: Dict[str, Any]) -> VehicleLatestLocation:
    return VehicleLatestLocation(
        tenant_id=source["tenant_id"],
        vehicle_id=source["vehicle_id"],
        gps_fix_id=source["gps_fix_id"],
        device_time_utc=_parse(source["device_time_utc"]),
        received_at_utc=_parse(source["received_at_utc"]),
        device_sequence=source.get("device_sequence") or 0,
        latitude=source["location"]["lat"],
        longitude=source["location"]["lon"],
        speed_kph=source.get("speed_kph"),
        heading_degrees=source.get("heading_degrees"),
        accuracy_meters=source.get("accuracy_meters"),
        route_schedule_id=source.get("route_schedule_id"),
        updated_at_utc=_parse(source.get("updated_at_utc")),
    )


class _ElasticsearchUnitOfWork(UnitOfWork):
    """Records the version of each snapshot it reads for the conditional write."""

    def __init__(self, store: "ElasticsearchTrackingStore", tenant_id: str, vehicle_ids: Iterable[str]):
        super().__init__(tenant_id, vehicle_ids)
        self._store = store
        # vehicle id -> (seq_no, primary_term, source) or None when absent
        self.versions: Dict[str, Optional[Tuple[int, int, Dict[str, Any]]]] = {}

    async def get_latest(self, vehicle_id: str) -> Optional[VehicleLatestLocation]:
        self._check_scope(self.tenant_id, vehicle_id)
        version = await self._store._read_snapshot_version(self.tenant_id, vehicle_id)
        self.versions[vehicle_id] = version
        return snapshot_from_document(version[2]) if version is not None else None


class ElasticsearchTrackingStore(TrackingStore):
    """
    TrackingStore on Elasticsearch with circuit breaker protection.

    Args:
        settings: Application settings (endpoint, API key, index names)
        client: Pre-built client, mainly for tests
        breaker: Circuit breaker, a default "elasticsearch" breaker if omitted
    """

    def __init__(
        self,
        settings: Any,
        client: Optional[Elasticsearch] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        self.settings = settings
        self.client = client or Elasticsearch(
            settings.elastic_endpoint,
            api_key=settings.elastic_api_key,
            verify_certs=True,
            request_timeout=30
        )
        self._circuit_breaker = breaker or CircuitBreaker(
            name="elasticsearch",
            config=CircuitBreakerConfig(
                failure_threshold=3,
                excluded_exceptions=(ConcurrencyConflict, DuplicateRegistrationError),
            )
        )
        self.fix_index = settings.elastic_fix_index
        self.latest_index = settings.elastic_latest_index
        self.vehicle_index = settings.elastic_vehicle_index
        self.tenant_index = settings.elastic_tenant_index
        self.registration_index = settings.elastic_registration_index

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    # Error translation

    def _handle_circuit_breaker_exception(self, exc: CircuitOpenException) -> None:
        """
        Raise ``circuit_open`` for a refused call.

        Raises:
            AppException: With CIRCUIT_OPEN error code
        """
        raise circuit_open(
            message=f"Storage temporarily unavailable. Circuit breaker '{exc.circuit_name}' is open.",
            details={
                "circuit_name": exc.circuit_name,
                "retry_after_seconds": int(exc.retry_after) if exc.retry_after else None,
                "service": "elasticsearch",
            }
        ) from exc

    def _handle_elasticsearch_error(self, operation: str, error: Exception) -> None:
        """
        Raise ``storage_unavailable`` for a failed Elasticsearch call.

        Raises:
            AppException: With STORAGE_UNAVAILABLE error code
        """
        logger.error(
            f"Elasticsearch {operation} failed: {error}",
            extra={"extra_data": {
                "operation": operation,
                "error_type": type(error).__name__,
            }}
        )
        raise storage_unavailable(
            message=f"Storage operation failed: {operation}",
            details={"operation": operation}
        ) from error

    async def _execute(self, operation: str, func):
        """Run ``func`` through the breaker and translate failures."""
        try:
            return await self._circuit_breaker.execute(func)
        except (ConcurrencyConflict, DuplicateRegistrationError, AppException):
            raise
        except CircuitOpenException as e:
            self._handle_circuit_breaker_exception(e)
        except Exception as e:
            self._handle_elasticsearch_error(operation, e)

    # Index management

    def _get_tenant_mapping(self) -> Dict[str, Any]:
        return {
            "properties": {
                "tenant_id": {"type": "keyword"},
                "name": {"type": "keyword"},
                "created_at_utc": {"type": "date"},
            }
        }

    def _get_vehicle_mapping(self) -> Dict[str, Any]:
        return {
            "properties": {
                "tenant_id": {"type": "keyword"},
                "vehicle_id": {"type": "keyword"},
                "registration_number": {"type": "keyword"},
                "name": {"type": "text", "fields": {"raw": {"type": "keyword"}}},
                "external_id": {"type": "keyword"},
                "status": {"type": "byte"},
                "created_at_utc": {"type": "date"},
            }
        }

    def _get_registration_mapping(self) -> Dict[str, Any]:
        return {
            "properties": {
                "tenant_id": {"type": "keyword"},
                "registration_number": {"type": "keyword"},
                "vehicle_id": {"type": "keyword"},
            }
        }

    def _get_fix_mapping(self) -> Dict[str, Any]:
        return {
            "properties": {
                "fix_id": {"type": "keyword"},
                "tenant_id": {"type": "keyword"},
                "vehicle_id": {"type": "keyword"},
                "location": {"type": "geo_point"},
                "device_time_utc": {"type": "date"},
                "received_at_utc": {"type": "date"},
                "correlation_id": {"type": "keyword"},
                "source": {"type": "keyword"},
                "device_sequence": {"type": "long"},
                "speed_kph": {"type": "double"},
                "heading_degrees": {"type": "double"},
                "accuracy_meters": {"type": "double"},
                "altitude_meters": {"type": "double"},
                "odometer_km": {"type": "double"},
                "quality": {"type": "byte"},
            }
        }

    def _get_latest_mapping(self) -> Dict[str, Any]:
        return {
            "properties": {
                "tenant_id": {"type": "keyword"},
                "vehicle_id": {"type": "keyword"},
                "gps_fix_id": {"type": "keyword"},
                "device_time_utc": {"type": "date"},
                "received_at_utc": {"type": "date"},
                "device_sequence": {"type": "long"},
                "location": {"type": "geo_point"},
                "speed_kph": {"type": "double"},
                "heading_degrees": {"type": "double"},
                "accuracy_meters": {"type": "double"},
                "route_schedule_id": {"type": "keyword"},
                "updated_at_utc": {"type": "date"},
            }
        }

    async def setup_indices(self) -> None:
        """Create missing indices with their mappings."""
        indices = {
            self.tenant_index: self._get_tenant_mapping(),
            self.vehicle_index: self._get_vehicle_mapping(),
            self.registration_index: self._get_registration_mapping(),
            self.fix_index: self._get_fix_mapping(),
            self.latest_index: self._get_latest_mapping(),
        }

        async def _do_setup():
            for index_name, mapping in indices.items():
                if self.client.indices.exists(index=index_name):
                    logger.info(f"Index already exists: {index_name}")
                    continue
                self.client.indices.create(index=index_name, mappings=mapping)
                logger.info(f"Created index: {index_name}")

        await self._execute("setup_indices", _do_setup)

    async def setup(self) -> None:
        """
        Create indices, retrying with exponential backoff while the
        cluster is still starting.
        """
        await retry_async(
            self.setup_indices,
            config=RetryConfig(
                max_attempts=5,
                initial_delay=1.0,
                max_delay=15.0,
                retryable_exceptions=(AppException,),
            ),
            operation_name="elasticsearch.setup_indices",
        )

    async def close(self) -> None:
        self.client.close()

    # Tenants

    async def add_tenant(self, tenant: Tenant) -> None:
        async def _do_add():
            try:
                self.client.create(
                    index=self.tenant_index,
                    id=tenant.id,
                    document={
                        "tenant_id": tenant.id,
                        "name": tenant.name,
                        "created_at_utc": _iso(tenant.created_at_utc),
                    },
                )
            except ConflictError:
                logger.debug(f"Tenant already registered: {tenant.id}")

        await self._execute("add_tenant", _do_add)

    async def tenant_exists(self, tenant_id: str) -> bool:
        async def _do_exists():
            return bool(self.client.exists(index=self.tenant_index, id=tenant_id))

        return await self._execute("tenant_exists", _do_exists)

    # Vehicles

    def _reserve_registration(self, vehicle: Vehicle) -> None:
        registration = vehicle.identity.registration_number
        if registration is None:
            return
        reservation_id = _doc_id(vehicle.tenant_id, registration)
        try:
            self.client.create(
                index=self.registration_index,
                id=reservation_id,
                document={
                    "tenant_id": vehicle.tenant_id,
                    "registration_number": registration,
                    "vehicle_id": vehicle.id,
                },
            )
        except ConflictError:
            holder = self.client.get(index=self.registration_index, id=reservation_id)
            if holder["_source"].get("vehicle_id") != vehicle.id:
                raise DuplicateRegistrationError(vehicle.tenant_id, registration)

    def _release_registration(self, tenant_id: str, registration: Optional[str]) -> None:
        if registration is None:
            return
        try:
            self.client.delete(index=self.registration_index, id=_doc_id(tenant_id, registration))
        except NotFoundError:
            pass

    async def add_vehicle(self, vehicle: Vehicle) -> None:
        async def _do_add():
            self._reserve_registration(vehicle)
            try:
                self.client.create(
                    index=self.vehicle_index,
                    id=_doc_id(vehicle.tenant_id, vehicle.id),
                    document=vehicle_to_document(vehicle),
                    refresh="wait_for",
                )
            except ConflictError:
                self._release_registration(vehicle.tenant_id, vehicle.identity.registration_number)
                raise

        await self._execute("add_vehicle", _do_add)

    async def get_vehicle(self, tenant_id: str, vehicle_id: str) -> Optional[Vehicle]:
        async def _do_get():
            try:
                response = self.client.get(index=self.vehicle_index, id=_doc_id(tenant_id, vehicle_id))
            except NotFoundError:
                return None
            return vehicle_from_document(response["_source"])

        return await self._execute("get_vehicle", _do_get)

    async def save_vehicle(self, vehicle: Vehicle) -> None:
        async def _do_save():
            doc_id = _doc_id(vehicle.tenant_id, vehicle.id)
            previous = self.client.get(index=self.vehicle_index, id=doc_id)["_source"]
            old_registration = previous.get("registration_number")
            new_registration = vehicle.identity.registration_number
            if new_registration != old_registration:
                self._reserve_registration(vehicle)
            self.client.index(
                index=self.vehicle_index,
                id=doc_id,
                document=vehicle_to_document(vehicle),
                refresh="wait_for",
            )
            if new_registration != old_registration:
                self._release_registration(vehicle.tenant_id, old_registration)

        await self._execute("save_vehicle", _do_save)

    async def delete_vehicle(self, tenant_id: str, vehicle_id: str) -> bool:
        async def _do_delete():
            doc_id = _doc_id(tenant_id, vehicle_id)
            try:
                previous = self.client.get(index=self.vehicle_index, id=doc_id)["_source"]
            except NotFoundError:
                return False
            self.client.delete_by_query(
                index=self.fix_index,
                query={"bool": {"filter": [
                    {"term": {"tenant_id": tenant_id}},
                    {"term": {"vehicle_id": vehicle_id}},
                ]}},
                conflicts="proceed",
            )
            try:
                self.client.delete(index=self.latest_index, id=doc_id)
            except NotFoundError:
                pass
            self.client.delete(index=self.vehicle_index, id=doc_id, refresh="wait_for")
            self._release_registration(tenant_id, previous.get("registration_number"))
            return True

        return await self._execute("delete_vehicle", _do_delete)

    async def existing_vehicle_ids(self, tenant_id: str, vehicle_ids: Iterable[str]) -> Set[str]:
        wanted = sorted(set(vehicle_ids))
        if not wanted:
            return set()

        async def _do_mget():
            response = self.client.mget(
                index=self.vehicle_index,
                ids=[_doc_id(tenant_id, vid) for vid in wanted],
                source=False,
            )
            return {
                vid for vid, doc in zip(wanted, response["docs"])
                if doc.get("found")
            }

        return await self._execute("existing_vehicle_ids", _do_mget)

    # Fix log and latest location

    async def _read_snapshot_version(
        self,
        tenant_id: str,
        vehicle_id: str
    ) -> Optional[Tuple[int, int, Dict[str, Any]]]:
        async def _do_get():
            try:
                response = self.client.get(index=self.latest_index, id=_doc_id(tenant_id, vehicle_id))
            except NotFoundError:
                return None
            return (response["_seq_no"], response["_primary_term"], response["_source"])

        return await self._execute("get_latest_location", _do_get)

    async def get_latest_location(
        self,
        tenant_id: str,
        vehicle_id: str
    ) -> Optional[VehicleLatestLocation]:
        version = await self._read_snapshot_version(tenant_id, vehicle_id)
        return snapshot_from_document(version[2]) if version is not None else None

    async def get_fixes(self, tenant_id: str, vehicle_id: str) -> List[GpsFix]:
        async def _do_scan():
            self.client.indices.refresh(index=self.fix_index)
            hits = scan(
                self.client,
                index=self.fix_index,
                query={"query": {"bool": {"filter": [
                    {"term": {"tenant_id": tenant_id}},
                    {"term": {"vehicle_id": vehicle_id}},
                ]}}},
            )
            fixes = [fix_from_document(hit["_source"]) for hit in hits]
            # scroll order is unspecified
            fixes.sort(key=lambda fix: (fix.received_at_utc, fix.device_time_utc))
            return fixes

        return await self._execute("get_fixes", _do_scan)

    def _rollback(
        self,
        uow: _ElasticsearchUnitOfWork,
        written_fix_ids: List[str],
        written_snapshots: List[Tuple[str, Dict[str, Any]]]
    ) -> None:
        """
        Undo the writes a failed commit already made.

        Raises:
            RollbackIncomplete: Some fixes could not be deleted again
        """
        orphaned: List[str] = []
        if written_fix_ids:
            _, errors = bulk(
                self.client,
                [
                    {"_op_type": "delete", "_index": self.fix_index, "_id": fix_id}
                    for fix_id in written_fix_ids
                ],
                raise_on_error=False,
            )
            # a 404 means the fix never landed
            orphaned = [
                item["delete"]["_id"] for item in errors
                if item.get("delete", {}).get("status") != 404
            ]
        for vehicle_id, response in written_snapshots:
            doc_id = _doc_id(uow.tenant_id, vehicle_id)
            previous = uow.versions.get(vehicle_id)
            try:
                if previous is None:
                    self.client.delete(
                        index=self.latest_index,
                        id=doc_id,
                        if_seq_no=response["_seq_no"],
                        if_primary_term=response["_primary_term"],
                    )
                else:
                    self.client.index(
                        index=self.latest_index,
                        id=doc_id,
                        document=previous[2],
                        if_seq_no=response["_seq_no"],
                        if_primary_term=response["_primary_term"],
                    )
            except (ConflictError, NotFoundError):
                # someone else already moved the row on; their write wins
                logger.warning(
                    "Skipped snapshot rollback, row changed again",
                    extra={"extra_data": {"tenant_id": uow.tenant_id, "vehicle_id": vehicle_id}}
                )

        if orphaned:
            logger.error(
                "Rollback could not delete fixes of a failed commit",
                extra={"extra_data": {"tenant_id": uow.tenant_id, "gps_fix_ids": orphaned}}
            )
            raise RollbackIncomplete(uow.tenant_id, orphaned)

    def _commit(self, uow: _ElasticsearchUnitOfWork) -> None:
        written_fix_ids: List[str] = []
        written_snapshots: List[Tuple[str, Dict[str, Any]]] = []
        current_vehicle = ""
        try:
            fixes = uow.staged_fixes
            if fixes:
                bulk(
                    self.client,
                    [
                        {
                            "_op_type": "create",
                            "_index": self.fix_index,
                            "_id": fix.id,
                            "_source": fix_to_document(fix),
                        }
                        for fix in fixes
                    ],
                )
                written_fix_ids = [fix.id for fix in fixes]

            for snapshot in uow.staged_snapshots:
                current_vehicle = snapshot.vehicle_id
                doc_id = _doc_id(uow.tenant_id, snapshot.vehicle_id)
                document = snapshot_to_document(snapshot)
                if snapshot.vehicle_id not in uow.versions:
                    raise ValueError(
                        f"snapshot for {snapshot.vehicle_id} replaced without being read"
                    )
                version = uow.versions[snapshot.vehicle_id]
                if version is None:
                    response = self.client.create(index=self.latest_index, id=doc_id, document=document)
                else:
                    response = self.client.index(
                        index=self.latest_index,
                        id=doc_id,
                        document=document,
                        if_seq_no=version[0],
                        if_primary_term=version[1],
                    )
                written_snapshots.append((snapshot.vehicle_id, response))
        except ConflictError as e:
            self._rollback(uow, written_fix_ids, written_snapshots)
            raise ConcurrencyConflict(uow.tenant_id, current_vehicle) from e
        except BulkIndexError:
            # some fixes may have landed before the failure
            self._rollback(uow, [fix.id for fix in uow.staged_fixes], written_snapshots)
            raise
        except Exception:
            self._rollback(uow, written_fix_ids, written_snapshots)
            raise

    @asynccontextmanager
    async def unit_of_work(
        self,
        tenant_id: str,
        vehicle_ids: Iterable[str]
    ) -> AsyncIterator[UnitOfWork]:
        uow = _ElasticsearchUnitOfWork(self, tenant_id, vehicle_ids)
        yield uow

        if not uow.staged_fixes and not uow.staged_snapshots:
            return

        async def _do_commit():
            telemetry = get_telemetry_service()
            attributes = {
                "tenant_id": tenant_id,
                "fix_count": len(uow.staged_fixes),
                "snapshot_count": len(uow.staged_snapshots),
            }
            if telemetry:
                with telemetry.create_external_service_span("elasticsearch", "commit", attributes):
                    self._commit(uow)
            else:
                self._commit(uow)

        # once writing starts the commit runs to completion or rolls back
        await asyncio.shield(self._execute("commit", _do_commit))
