"""
Storage backends for the GeoTrack ingestion service.

``create_store`` picks the backend named by ``settings.storage_backend``.
"""

from typing import Any

from config.settings import StorageBackend
from storage.base import (
    ConcurrencyConflict,
    DuplicateRegistrationError,
    RollbackIncomplete,
    StorageError,
    TrackingStore,
    UnitOfWork,
)
from storage.memory import InMemoryTrackingStore


def create_store(settings: Any) -> TrackingStore:
    """
    Build the configured tracking store.

    Args:
        settings: Application settings

    Returns:
        An unopened TrackingStore; call ``setup()`` before use
    """
    if settings.storage_backend == StorageBackend.ELASTICSEARCH:
        from storage.elasticsearch_store import ElasticsearchTrackingStore
        return ElasticsearchTrackingStore(settings)
    return InMemoryTrackingStore()


__all__ = [
    "ConcurrencyConflict",
    "DuplicateRegistrationError",
    "InMemoryTrackingStore",
    "RollbackIncomplete",
    "StorageError",
    "TrackingStore",
    "UnitOfWork",
    "create_store",
]
