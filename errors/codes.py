"""
Error code catalog for the GeoTrack ingestion service.

Codes are stable, lowercase identifiers that clients can branch on. Each
code maps to a default HTTP status and, where one exists, a default
human-readable message.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """
    Enumeration of all error codes used in the application.

    - Validation errors (400): malformed or out-of-range input
    - Not found (404): unknown vehicle for the tenant
    - Conflicts (409): uniqueness, lifecycle and concurrency conflicts
    - Infrastructure errors (5xx): storage and internal failures
    """

    # Validation errors (400)
    VALIDATION_ERROR = "validation_error"
    """Request payload did not match the expected schema"""

    INVALID_PAYLOAD = "invalid_payload"
    """A value was rejected by its domain type"""

    MISSING_TENANT = "missing_tenant"
    """Tenant header was not supplied"""

    INVALID_TENANT = "invalid_tenant"
    """Tenant header is not a registered, non-nil UUID"""

    INVALID_VEHICLE = "invalid_vehicle"
    """Batch item vehicle id is missing or not a UUID"""

    INVALID_DEVICE_TIME = "invalid_device_time"
    """Device timestamp is not explicitly UTC"""

    INVALID_HEADING = "invalid_heading"
    """Heading is 360 or more"""

    MISSING_CORRELATION_ID = "missing_correlation_id"
    """Correlation id is absent or blank"""

    INVALID_QUERY = "invalid_query"
    """Query string parameter out of range"""

    # Not found (404)
    VEHICLE_NOT_FOUND = "vehicle_not_found"
    """Vehicle does not exist for the tenant"""

    # Conflicts (409)
    DUPLICATE_REGISTRATION_NUMBER = "duplicate_registration_number"
    """Registration number already used by another vehicle of the tenant"""

    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    """Lifecycle transition not permitted from the current status"""

    CONCURRENCY_CONFLICT = "concurrency_conflict"
    """Snapshot kept changing underneath the write"""

    RATE_LIMITED = "rate_limited"
    """Too many requests (HTTP 429)"""

    # Infrastructure errors (5xx)
    STORAGE_UNAVAILABLE = "storage_unavailable"
    """Storage backend failed (HTTP 503)"""

    CIRCUIT_OPEN = "circuit_open"
    """Circuit breaker is open (HTTP 503)"""

    INTERNAL_ERROR = "internal_error"
    """Unexpected server error (HTTP 500)"""


# Mapping of error codes to their default HTTP status codes
ERROR_CODE_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_PAYLOAD: 400,
    ErrorCode.MISSING_TENANT: 400,
    ErrorCode.INVALID_TENANT: 400,
    ErrorCode.INVALID_VEHICLE: 400,
    ErrorCode.INVALID_DEVICE_TIME: 400,
    ErrorCode.INVALID_HEADING: 400,
    ErrorCode.MISSING_CORRELATION_ID: 400,
    ErrorCode.INVALID_QUERY: 400,
    ErrorCode.VEHICLE_NOT_FOUND: 404,
    ErrorCode.DUPLICATE_REGISTRATION_NUMBER: 409,
    ErrorCode.INVALID_STATUS_TRANSITION: 409,
    ErrorCode.CONCURRENCY_CONFLICT: 409,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.STORAGE_UNAVAILABLE: 503,
    ErrorCode.CIRCUIT_OPEN: 503,
}


# Default messages, kept stable alongside the codes
ERROR_CODE_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.MISSING_TENANT: "Missing required tenant header.",
    ErrorCode.INVALID_TENANT: "Tenant header must be a non-empty GUID.",
    ErrorCode.INVALID_VEHICLE: "vehicleId must be a non-empty GUID",
    ErrorCode.VEHICLE_NOT_FOUND: "Vehicle not found for tenant",
    ErrorCode.INVALID_DEVICE_TIME: "deviceTimeUtc must be UTC",
    ErrorCode.INVALID_HEADING: "headingDegrees must be in range [0, 360)",
    ErrorCode.MISSING_CORRELATION_ID: "correlationId is required",
    ErrorCode.DUPLICATE_REGISTRATION_NUMBER: (
        "A vehicle with the same registration number already exists for this tenant."
    ),
    ErrorCode.INVALID_QUERY: "staleAfterSeconds must be between 1 and 86400",
}


def get_default_status_code(error_code: ErrorCode) -> int:
    """
    Get the default HTTP status code for an error code.

    Args:
        error_code: The error code to look up

    Returns:
        The default HTTP status code for the error code
    """
    return ERROR_CODE_STATUS_MAP.get(error_code, 500)


def get_default_message(error_code: ErrorCode) -> str:
    """Get the default message for an error code, falling back to the code itself."""
    return ERROR_CODE_MESSAGES.get(error_code, error_code.value)
