"""Custom exceptions for CFRec.

Separates caller mistakes ("fix your call") from transient infrastructure
failures ("try again") so the API layer and library callers can tell them
apart.
"""

from typing import Any, Dict, Optional


class CFRecException(Exception):
    """Base exception for CFRec errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class InvalidRequestError(CFRecException):
    """Raised when a caller passes an invalid argument to the engine."""

    def __init__(self, field: str, value: Any, reason: str):
        message = f"Invalid {field}={value!r}: {reason}"
        super().__init__(
            message=message,
            status_code=400,
            details={"field": field, "value": repr(value), "reason": reason},
        )


class StoreUnavailableError(CFRecException):
    """Raised when a behavior or similarity store call fails or times out."""

    def __init__(self, operation: str, error: Exception):
        message = f"Store call '{operation}' failed: {str(error)}"
        super().__init__(
            message=message,
            status_code=503,
            details={
                "operation": operation,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class CacheError(CFRecException):
    """Raised when the recommendation cache backend fails."""

    def __init__(self, operation: str, error: Exception):
        message = f"Cache operation '{operation}' failed: {str(error)}"
        super().__init__(
            message=message,
            status_code=503,
            details={
                "operation": operation,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
