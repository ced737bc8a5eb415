"""
Shared error handling for the Budget Ledger API.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: str


class BudgetApiException(Exception):
    """Base exception for Budget Ledger API services."""

    status_code: int = 500
    title: str = "Internal Server Error"

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response.

        Details stay server-side; only the title and message reach the client.
        """
        return ErrorResponse(error=self.title, message=self.message)


class AuthenticationError(BudgetApiException):
    """Missing, malformed, invalid or expired credentials."""

    status_code = 401
    title = "Unauthorized"

    def __init__(self, message: str = "Invalid or expired token", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class TokenVerificationError(BudgetApiException):
    """Raised by token verifiers when a token fails cryptographic or claim checks."""

    status_code = 401
    title = "Unauthorized"

    def __init__(self, message: str = "Token verification failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_VERIFICATION_ERROR", message, details)


class NotFoundError(BudgetApiException):
    """Record absent or not owned by the caller."""

    status_code = 404
    title = "Not Found"

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ValidationError(BudgetApiException):
    """Validation-related errors."""

    status_code = 400
    title = "Bad Request"

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class InvalidRangeError(ValidationError):
    """Budget period whose start falls after its end."""

    def __init__(self, message: str = "start_date must not be after end_date", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "INVALID_RANGE"


class StorageError(BudgetApiException):
    """Persistence-layer failure (connectivity, constraint violation)."""

    status_code = 500
    title = "Internal Server Error"

    def __init__(self, message: str = "Storage failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)
