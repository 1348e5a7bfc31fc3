from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware

from config.settings import Settings, get_settings, validate_startup
from domain.vehicles import Tenant
from errors.handlers import register_exception_handlers
from fleet.service import VehicleService
from ingestion.schemas import (
    BatchGpsFixRequest,
    BatchIngestGpsFixesResponse,
    BatchItemResultResponse,
    GpsFixRequest,
    IngestGpsFixResponse,
)
from ingestion.service import GpsFixIngestionService
from middleware.rate_limiter import setup_rate_limiting
from middleware.request_id import RequestIDMiddleware
from middleware.tenant import TENANT_HEADER, TenantResolutionMiddleware, get_tenant_id
from resilience.retry import RetryConfig
from storage import ConcurrencyConflict, TrackingStore, create_store
from telemetry.service import initialize_telemetry
from vehicle_endpoints import router as vehicle_router

logger = logging.getLogger(__name__)


def get_ingestion_service(request: Request) -> GpsFixIngestionService:
    return request.app.state.ingestion_service


ingestion_router = APIRouter(tags=["gps-fixes"])


@ingestion_router.post(
    "/vehicles/{vehicle_id}/gps-fixes",
    status_code=status.HTTP_201_CREATED,
    response_model=IngestGpsFixResponse,
    response_model_by_alias=True,
)
async def ingest_gps_fix(
    vehicle_id: str,
    payload: GpsFixRequest,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: GpsFixIngestionService = Depends(get_ingestion_service),
):
    """
    Ingest one GPS fix for a vehicle.

    The fix is always stored; ``isLatestApplied`` tells whether it
    also became the vehicle's latest location.
    """
    result = await service.ingest_single(tenant_id, vehicle_id, payload)
    return IngestGpsFixResponse(
        vehicle_id=result.vehicle_id,
        gps_fix_id=result.gps_fix_id,
        device_time_utc=result.device_time_utc,
        received_at_utc=result.received_at_utc,
        is_latest_applied=result.is_latest_applied,
    )


@ingestion_router.post(
    "/gps-fixes/batch",
    response_model=BatchIngestGpsFixesResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def ingest_gps_fix_batch(
    batch: BatchGpsFixRequest,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: GpsFixIngestionService = Depends(get_ingestion_service),
):
    """
    Ingest GPS fixes for several vehicles at once.

    Items are accepted or rejected independently; ``results`` lines up
    with ``items`` by index.
    """
    logger.info(
        "GPS fix batch received",
        extra={"extra_data": {"batch_size": len(batch.items)}}
    )
    result = await service.ingest_batch(tenant_id, batch)
    return BatchIngestGpsFixesResponse(
        accepted_count=result.accepted_count,
        rejected_count=result.rejected_count,
        received_at_utc=result.received_at_utc,
        results=[
            BatchItemResultResponse(
                index=r.index,
                vehicle_id=r.vehicle_id,
                status=r.status,
                gps_fix_id=r.gps_fix_id,
                error=r.error,
                message=r.message,
            )
            for r in result.results
        ],
    )


async def bootstrap_tenants(store: TrackingStore, tenant_ids) -> None:
    """Register the configured tenants; already known ids are left alone."""
    now = datetime.now(timezone.utc)
    for tenant_id in tenant_ids:
        if await store.tenant_exists(tenant_id):
            continue
        await store.add_tenant(Tenant(id=tenant_id, name=f"tenant-{tenant_id}", created_at_utc=now))
        logger.info(
            "Registered bootstrap tenant",
            extra={"extra_data": {"tenant_id": tenant_id}}
        )


def create_app(settings: Optional[Settings] = None, store: Optional[TrackingStore] = None) -> FastAPI:
    """
    Build the GeoTrack ingestion API.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        store: Tracking store to use instead of the configured backend

    Returns:
        The FastAPI application; storage is opened by its lifespan
    """
    settings = validate_startup(settings or get_settings())
    telemetry_service = initialize_telemetry(settings)
    store = store or create_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting GeoTrack ingestion API",
            extra={"extra_data": {
                "environment": settings.environment.value,
                "storage_backend": settings.storage_backend.value,
            }}
        )
        await store.setup()
        await bootstrap_tenants(store, settings.bootstrap_tenant_ids)

        yield

        logger.info("Shutting down GeoTrack ingestion API")
        await store.close()

    app = FastAPI(title="GeoTrack Ingestion API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.ingestion_service = GpsFixIngestionService(
        store=store,
        telemetry=telemetry_service,
        max_batch_size=settings.max_batch_size,
        conflict_retry=RetryConfig(
            max_attempts=settings.snapshot_conflict_max_attempts,
            initial_delay=settings.snapshot_conflict_initial_delay,
            retryable_exceptions=(ConcurrencyConflict,),
        ),
    )
    app.state.vehicle_service = VehicleService(
        store=store,
        telemetry=telemetry_service,
        default_stale_after_seconds=settings.default_stale_after_seconds,
    )

    register_exception_handlers(app)

    # Added innermost first: the request id must exist before tenant
    # resolution or the rate limiter can answer with an error body.
    setup_rate_limiting(
        app,
        requests_per_minute=settings.rate_limit_requests_per_minute,
        enabled=settings.rate_limit_enabled,
    )
    app.add_middleware(TenantResolutionMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Accept",
            "Content-Type",
            "Authorization",
            "X-Request-ID",
            TENANT_HEADER,
        ],
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=600,
    )

    app.include_router(vehicle_router)
    app.include_router(ingestion_router)
    return app


app = create_app()

if __name__ == "__main__":
    import os

    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
