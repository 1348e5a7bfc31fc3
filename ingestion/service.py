"""
GPS fix ingestion: single fixes and multi-vehicle batches.

Both paths validate each fix, append accepted fixes to the fix log and
replace a vehicle's latest location only when the Latest-Location Policy
says the new fix supersedes it. Fix inserts and snapshot replacements of
one call commit together through a single unit of work. When a snapshot
changes underneath the commit, the whole unit of work is re-run with
exponential backoff.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from domain.errors import TelemetryValidationError
from domain.fixes import GpsFix, TelemetrySource
from domain.policy import create_snapshot, is_newer, should_replace
from errors.codes import ErrorCode
from errors.exceptions import (
    AppException,
    concurrency_conflict,
    missing_tenant,
    validation_error,
    vehicle_not_found,
)
from ingestion.preconditions import Rejection, check_fix_payload, parse_vehicle_id
from ingestion.schemas import BatchGpsFixRequest, GpsFixRequest
from middleware.tenant import TENANT_HEADER
from resilience.retry import RetryConfig, RetryExhaustedException, retry_async
from storage.base import ConcurrencyConflict, TrackingStore
from telemetry.service import TelemetryService, get_telemetry_service

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
REJECTED = "rejected"

# raised by value types and GpsFix construction
_PAYLOAD_ERRORS = (TelemetryValidationError, ValueError, TypeError)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_fix_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class IngestResult:
    """Outcome of a single accepted fix."""
    vehicle_id: str
    gps_fix_id: str
    device_time_utc: datetime
    received_at_utc: datetime
    is_latest_applied: bool


@dataclass(frozen=True)
class BatchItemResult:
    index: int
    vehicle_id: Optional[str]
    status: str
    gps_fix_id: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def rejected(cls, index: int, vehicle_id: Optional[str], rejection: Rejection) -> "BatchItemResult":
        return cls(
            index=index,
            vehicle_id=vehicle_id,
            status=REJECTED,
            error=rejection.code.value,
            message=rejection.message,
        )


@dataclass
class BatchResult:
    """Aggregate batch outcome; ``results`` is index-aligned with the input."""
    received_at_utc: datetime
    results: List[BatchItemResult] = field(default_factory=list)
    snapshots_replaced: int = 0

    @property
    def accepted_count(self) -> int:
        return sum(1 for r in self.results if r.status == ACCEPTED)

    @property
    def rejected_count(self) -> int:
        return sum(1 for r in self.results if r.status == REJECTED)


class GpsFixIngestionService:
    """
    Ingests GPS fixes for the vehicles of a tenant.

    Args:
        store: Tracking store for existence checks and the unit of work
        clock: Returns the current UTC time; used for receipt and snapshot
            timestamps
        id_factory: Returns a new fix id
        telemetry: Telemetry service (uses the global one if omitted)
        max_batch_size: Largest batch accepted by ``ingest_batch``
        conflict_retry: Retry policy for snapshot conflicts
    """

    def __init__(
        self,
        store: TrackingStore,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_fix_id,
        telemetry: Optional[TelemetryService] = None,
        max_batch_size: int = 1000,
        conflict_retry: Optional[RetryConfig] = None
    ):
        self.store = store
        self.clock = clock
        self.id_factory = id_factory
        self.telemetry = telemetry or get_telemetry_service()
        self.max_batch_size = max_batch_size
        self.conflict_retry = conflict_retry or RetryConfig(
            max_attempts=3,
            initial_delay=0.05,
            retryable_exceptions=(ConcurrencyConflict,),
        )

    def _build_fix(
        self,
        tenant_id: str,
        vehicle_id: str,
        payload: GpsFixRequest,
        received_at: datetime
    ) -> GpsFix:
        return GpsFix.create(
            id=self.id_factory(),
            tenant_id=tenant_id,
            vehicle_id=vehicle_id,
            latitude=payload.latitude,
            longitude=payload.longitude,
            device_time_utc=payload.device_time_utc,
            received_at_utc=received_at,
            correlation_id=payload.correlation_id,
            source=TelemetrySource.DEVICE,
            device_sequence=payload.device_sequence,
            speed_kph=payload.speed_kph,
            heading_degrees=payload.heading_degrees,
            accuracy_meters=payload.accuracy_meters,
            altitude_meters=payload.altitude_meters,
            odometer_km=payload.odometer_km,
        )

    async def _commit(
        self,
        tenant_id: str,
        fixes: List[GpsFix],
        best_per_vehicle: Dict[str, GpsFix],
        operation_name: str
    ) -> List[str]:
        """
        Persist ``fixes`` and apply the policy once per vehicle.

        Returns:
            The vehicle ids whose snapshot was replaced

        Raises:
            AppException: concurrency_conflict when retries run out
        """
        async def _apply() -> List[str]:
            replaced = []
            async with self.store.unit_of_work(tenant_id, best_per_vehicle.keys()) as uow:
                for fix in fixes:
                    uow.add_fix(fix)
                for vehicle_id, candidate in best_per_vehicle.items():
                    current = await uow.get_latest(vehicle_id)
                    if not should_replace(current, candidate):
                        continue
                    uow.replace_latest(create_snapshot(
                        tenant_id=tenant_id,
                        vehicle_id=vehicle_id,
                        fix=candidate,
                        route_schedule_id=current.route_schedule_id if current else None,
                        updated_at_utc=self.clock(),
                    ))
                    replaced.append(vehicle_id)
            return replaced

        try:
            return await retry_async(
                _apply,
                config=self.conflict_retry,
                operation_name=operation_name,
            )
        except RetryExhaustedException as e:
            raise concurrency_conflict(details={
                "attempts": e.attempts,
                "vehicle_id": getattr(e.last_exception, "vehicle_id", None),
            }) from e

    def _record_metrics(self, started: float, accepted: int, rejected: int, replaced: int, path: str) -> None:
        if not self.telemetry:
            return
        tags = {"path": path}
        self.telemetry.record_metric(
            "gps_fix.ingest.duration_ms", (time.perf_counter() - started) * 1000, tags
        )
        if path == "batch":
            self.telemetry.record_metric("gps_fix.batch.accepted", accepted, tags)
            self.telemetry.record_metric("gps_fix.batch.rejected", rejected, tags)
        self.telemetry.record_metric("latest_location.replaced", replaced, tags)

    async def ingest_single(
        self,
        tenant_id: Optional[str],
        vehicle_id: str,
        payload: GpsFixRequest
    ) -> IngestResult:
        """
        Ingest one fix for one vehicle.

        Checks, first failure wins: tenant present, vehicle id names an
        existing vehicle of the tenant, device time is UTC, heading below
        360, correlation id present. Nothing is written unless every check
        passes.

        Args:
            tenant_id: Resolved tenant, None when the request carried none
            vehicle_id: Vehicle id from the route
            payload: The fix

        Returns:
            IngestResult with ``is_latest_applied`` telling whether the
            fix became the vehicle's latest location

        Raises:
            AppException: With the rejection code of the failed check,
                invalid_payload for values outside their domain, or
                concurrency_conflict
        """
        started = time.perf_counter()
        if tenant_id is None:
            raise missing_tenant(TENANT_HEADER)

        # a route id that is not a UUID cannot name a vehicle of the tenant
        canonical_id = parse_vehicle_id(vehicle_id)
        if canonical_id is None:
            raise vehicle_not_found(vehicle_id)

        if canonical_id not in await self.store.existing_vehicle_ids(tenant_id, [canonical_id]):
            raise vehicle_not_found(canonical_id)

        rejection = check_fix_payload(payload)
        if rejection is not None:
            raise rejection.to_exception()

        received_at = self.clock()
        try:
            fix = self._build_fix(tenant_id, canonical_id, payload, received_at)
        except _PAYLOAD_ERRORS as e:
            raise AppException(
                error_code=ErrorCode.INVALID_PAYLOAD,
                message=str(e),
                details={"field": e.field} if isinstance(e, TelemetryValidationError) else None,
            ) from e

        replaced = await self._commit(tenant_id, [fix], {canonical_id: fix}, "ingest_single")
        is_latest_applied = bool(replaced)

        logger.info(
            "GPS fix ingested",
            extra={"extra_data": {
                "vehicle_id": canonical_id,
                "gps_fix_id": fix.id,
                "correlation_id": str(fix.correlation_id),
                "is_latest_applied": is_latest_applied,
            }}
        )
        self._record_metrics(started, 1, 0, len(replaced), "single")

        return IngestResult(
            vehicle_id=canonical_id,
            gps_fix_id=fix.id,
            device_time_utc=fix.device_time_utc,
            received_at_utc=fix.received_at_utc,
            is_latest_applied=is_latest_applied,
        )

    async def ingest_batch(
        self,
        tenant_id: Optional[str],
        request: BatchGpsFixRequest
    ) -> BatchResult:
        """
        Ingest a batch of fixes for any number of the tenant's vehicles.

        Every item is judged on its own; a rejected item never stops the
        others. All items share one receipt time. Vehicle existence is
        resolved with a single lookup. Per vehicle only the most recent
        accepted fix is compared with the stored snapshot, so a vehicle
        gets at most one snapshot write per batch.

        Args:
            tenant_id: Resolved tenant, None when the request carried none
            request: The batch

        Returns:
            BatchResult with one result per item, in input order

        Raises:
            AppException: missing_tenant, validation_error for an oversized
                batch, concurrency_conflict, or a storage failure that
                aborts the whole batch
        """
        started = time.perf_counter()
        if tenant_id is None:
            raise missing_tenant(TENANT_HEADER)

        items = request.items
        if len(items) > self.max_batch_size:
            raise validation_error(
                f"Batch contains {len(items)} items; the maximum is {self.max_batch_size}",
                details={"max_batch_size": self.max_batch_size, "item_count": len(items)},
            )

        received_at = self.clock()
        parsed_ids = [parse_vehicle_id(item.vehicle_id) for item in items]
        requested = {vid for vid in parsed_ids if vid is not None}
        known = await self.store.existing_vehicle_ids(tenant_id, requested) if requested else set()

        result = BatchResult(received_at_utc=received_at)
        accepted_fixes: List[GpsFix] = []
        best_per_vehicle: Dict[str, GpsFix] = {}

        for index, (item, vehicle_id) in enumerate(zip(items, parsed_ids)):
            echo_id = vehicle_id or item.vehicle_id

            if vehicle_id is None:
                result.results.append(BatchItemResult.rejected(
                    index, echo_id, Rejection.of(ErrorCode.INVALID_VEHICLE)
                ))
                continue
            if vehicle_id not in known:
                result.results.append(BatchItemResult.rejected(
                    index, echo_id, Rejection.of(ErrorCode.VEHICLE_NOT_FOUND)
                ))
                continue

            rejection = check_fix_payload(item)
            if rejection is not None:
                result.results.append(BatchItemResult.rejected(index, echo_id, rejection))
                continue

            try:
                fix = self._build_fix(tenant_id, vehicle_id, item, received_at)
            except _PAYLOAD_ERRORS as e:
                result.results.append(BatchItemResult.rejected(
                    index, echo_id, Rejection.of(ErrorCode.INVALID_PAYLOAD, str(e))
                ))
                continue

            accepted_fixes.append(fix)
            result.results.append(BatchItemResult(
                index=index,
                vehicle_id=vehicle_id,
                status=ACCEPTED,
                gps_fix_id=fix.id,
            ))
            best = best_per_vehicle.get(vehicle_id)
            if best is None or is_newer(fix, best):
                best_per_vehicle[vehicle_id] = fix

        if accepted_fixes:
            replaced = await self._commit(tenant_id, accepted_fixes, best_per_vehicle, "ingest_batch")
            result.snapshots_replaced = len(replaced)

        logger.info(
            "GPS fix batch ingested",
            extra={"extra_data": {
                "item_count": len(items),
                "accepted_count": result.accepted_count,
                "rejected_count": result.rejected_count,
                "vehicle_count": len(best_per_vehicle),
                "snapshots_replaced": result.snapshots_replaced,
            }}
        )
        self._record_metrics(
            started, result.accepted_count, result.rejected_count, result.snapshots_replaced, "batch"
        )
        return result
