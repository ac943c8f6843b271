"""
Custom exception hierarchy for the Polychat API.

This module defines a standardized exception hierarchy for consistent
error handling across the application. Only validation and persistence
failures are expected to reach HTTP callers; translation and delivery
faults are contained inside their services.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BaseAppException(HTTPException):
    """Base exception for all application errors.

    ``context`` carries machine-readable details, such as the offending
    field, returned to clients next to the message.
    """

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        headers: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}


# Authentication Exceptions


class AuthenticationError(BaseAppException):
    """Raised when the caller cannot be identified."""

    def __init__(
        self, detail: str = "Authentication required", error_code: Optional[str] = None
    ):
        super().__init__(
            detail, status.HTTP_401_UNAUTHORIZED, error_code=error_code or "AUTH_ERROR"
        )


class PermissionDeniedError(BaseAppException):
    """Raised when the caller is not allowed to access a resource."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            detail, status.HTTP_403_FORBIDDEN, error_code="PERMISSION_DENIED"
        )


# Resource Exceptions


class ResourceNotFoundError(BaseAppException):
    """Raised when a resource is not found."""

    def __init__(self, resource_type: str, resource_id: str):
        detail = f"{resource_type} with ID '{resource_id}' not found"
        super().__init__(
            detail,
            status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
            context={"resource": resource_type, "id": resource_id},
        )


# Data Validation Exceptions


class ValidationError(BaseAppException):
    """Raised when data validation fails."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = (
            f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        )
        super().__init__(
            detail,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
            context={"field": field} if field else None,
        )


class UnsupportedLanguageError(BaseAppException):
    """Raised when a client asks for a language we cannot target."""

    def __init__(self, language: str):
        super().__init__(
            f"Unsupported language: '{language}'",
            status.HTTP_400_BAD_REQUEST,
            error_code="UNSUPPORTED_LANGUAGE",
            context={"language": language},
        )


# Storage Exceptions


class PersistenceError(BaseAppException):
    """Raised when the message store fails. Nothing is delivered."""

    def __init__(self, detail: str, operation: str = "write"):
        # Map to controlled vocabulary to prevent high cardinality
        operation_map = {
            "read": "READ",
            "write": "WRITE",
            "create": "CREATE",
            "update": "UPDATE",
        }
        normalized_op = operation_map.get(operation.lower(), "UNKNOWN")
        super().__init__(
            f"Storage {operation} failed: {detail}",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code=f"PERSISTENCE_{normalized_op}_ERROR",
            context={"operation": normalized_op.lower()},
        )
