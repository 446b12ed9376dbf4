"""
Exception classes and error handling utilities for the MoodHabit analytics API.
"""

from fastapi.responses import JSONResponse
from fastapi import status
from typing import Optional


class MoodHabitAPIError(Exception):
    """Base exception for MoodHabit errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> JSONResponse:
        """Convert exception to FastAPI JSONResponse."""
        return JSONResponse(
            status_code=self.status_code,
            content={
                "success": False,
                "error": self.message,
                "error_code": self.error_code,
                **({"details": self.details} if self.details else {}),
            },
        )


class ValidationError(MoodHabitAPIError):
    """Raised when user-supplied input is out of range."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        full_details = details or {}
        if field:
            full_details["field"] = field
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR",
            details=full_details,
        )


class ResourceNotFoundError(MoodHabitAPIError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier},
        )


class StorageError(MoodHabitAPIError):
    """Raised by a key-value backend when it cannot read or write a collection."""

    def __init__(self, key: str, message: str, details: Optional[dict] = None):
        full_details = details or {}
        full_details["key"] = key
        super().__init__(
            message=f"Storage error on {key}: {message}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="STORAGE_UNAVAILABLE",
            details=full_details,
        )
