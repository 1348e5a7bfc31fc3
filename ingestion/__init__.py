"""
GPS fix ingestion for single fixes and multi-vehicle batches.
"""

from ingestion.schemas import (
    BatchGpsFixItem,
    BatchGpsFixRequest,
    BatchIngestGpsFixesResponse,
    BatchItemResultResponse,
    GpsFixRequest,
    IngestGpsFixResponse,
)
from ingestion.service import (
    BatchItemResult,
    BatchResult,
    GpsFixIngestionService,
    IngestResult,
)

__all__ = [
    "BatchGpsFixItem",
    "BatchGpsFixRequest",
    "BatchIngestGpsFixesResponse",
    "BatchItemResultResponse",
    "GpsFixRequest",
    "IngestGpsFixResponse",
    "BatchItemResult",
    "BatchResult",
    "GpsFixIngestionService",
    "IngestResult",
]
