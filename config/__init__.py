# Configuration module for the GeoTrack ingestion service
from .settings import (
    ConfigurationError,
    Environment,
    Settings,
    StorageBackend,
    clear_settings_cache,
    get_settings,
    validate_startup,
)

__all__ = [
    "ConfigurationError",
    "Environment",
    "Settings",
    "StorageBackend",
    "clear_settings_cache",
    "get_settings",
    "validate_startup",
]
