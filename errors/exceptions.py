"""
Exception classes for the GeoTrack ingestion service.

This module provides the AppException class and factory functions for
the error codes that routes and services raise directly.
"""

from typing import Any, Optional

from errors.codes import ErrorCode, get_default_message, get_default_status_code


class AppException(Exception):
    """
    Base exception class for all application-specific errors.

    This exception carries structured error information:
    - error_code: A stable code from the ErrorCode enum
    - message: A human-readable error message
    - status_code: The HTTP status code to return
    - details: Optional additional context (e.g., field-level errors)

    Example:
        raise AppException(
            error_code=ErrorCode.INVALID_HEADING,
            message="headingDegrees must be in range [0, 360)",
            details={"field": "headingDegrees"}
        )
    """

    def __init__(
        self,
        error_code: ErrorCode,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None
    ):
        """
        Initialize an AppException.

        Args:
            error_code: The error code from the ErrorCode enum
            message: A human-readable message (defaults to the code's message)
            status_code: The HTTP status code (defaults to the error code's default)
            details: Optional dictionary with additional error context
        """
        self.error_code = error_code
        self.message = message or get_default_message(error_code)
        self.status_code = status_code or get_default_status_code(error_code)
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for JSON serialization.

        Returns:
            Dictionary containing error_code, message, and details
        """
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return (
            f"AppException(error_code={self.error_code.value!r}, "
            f"message={self.message!r}, status_code={self.status_code}, "
            f"details={self.details!r})"
        )


# Factory functions for errors raised outside the ingestion rejection flow

def validation_error(
    message: str,
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Create a validation error exception."""
    return AppException(
        error_code=ErrorCode.VALIDATION_ERROR,
        message=message,
        details=details
    )


def missing_tenant(header_name: str) -> AppException:
    """Create the error returned when a tenant-scoped route has no tenant."""
    return AppException(
        error_code=ErrorCode.MISSING_TENANT,
        message=f"{get_default_message(ErrorCode.MISSING_TENANT)} '{header_name}'.",
    )


def invalid_tenant(header_name: str) -> AppException:
    """Create the error returned for a malformed or unknown tenant header."""
    return AppException(
        error_code=ErrorCode.INVALID_TENANT,
        message=f"{get_default_message(ErrorCode.INVALID_TENANT)} '{header_name}'.",
    )


def vehicle_not_found(vehicle_id: Optional[str] = None) -> AppException:
    """Create a vehicle not found exception."""
    return AppException(
        error_code=ErrorCode.VEHICLE_NOT_FOUND,
        details={"vehicle_id": vehicle_id} if vehicle_id else None
    )


def duplicate_registration_number(registration_number: Optional[str] = None) -> AppException:
    """Create a conflict for a registration number already in use."""
    return AppException(
        error_code=ErrorCode.DUPLICATE_REGISTRATION_NUMBER,
        details={"registration_number": registration_number} if registration_number else None
    )


def invalid_status_transition(
    message: str,
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Create an invalid lifecycle transition exception."""
    return AppException(
        error_code=ErrorCode.INVALID_STATUS_TRANSITION,
        message=message,
        details=details
    )


def invalid_query(message: Optional[str] = None) -> AppException:
    """Create an invalid query parameter exception."""
    return AppException(error_code=ErrorCode.INVALID_QUERY, message=message)


def concurrency_conflict(
    message: str = "Latest location changed concurrently, please retry",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Create a concurrency conflict exception."""
    return AppException(
        error_code=ErrorCode.CONCURRENCY_CONFLICT,
        message=message,
        details=details
    )


def storage_unavailable(
    message: str = "Storage backend unavailable",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Create a storage unavailable exception."""
    return AppException(
        error_code=ErrorCode.STORAGE_UNAVAILABLE,
        message=message,
        details=details
    )


def circuit_open(
    message: str = "Service temporarily unavailable",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Create a circuit open exception."""
    return AppException(
        error_code=ErrorCode.CIRCUIT_OPEN,
        message=message,
        details=details
    )

