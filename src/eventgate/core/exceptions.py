"""
Custom exceptions for the EventGate service.

Provides structured error handling with appropriate HTTP status codes
and error details for API responses.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class EventGateException(Exception):
    """Base exception for EventGate service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(EventGateException):
    """Raised when request validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class AuthenticationError(EventGateException):
    """
    Raised when authentication fails.

    The message stays generic whatever the cause, so callers cannot tell a
    bad JWT from an unknown key.
    """

    def __init__(self, message: str = "Invalid or missing credentials") -> None:
        super().__init__(
            message=message,
            status_code=401,
            error_code="authentication_error",
        )


class AuthorizationError(EventGateException):
    """Raised when a valid credential lacks the required scope."""

    def __init__(self, message: str = "Credential is not allowed to perform this operation") -> None:
        super().__init__(
            message=message,
            status_code=403,
            error_code="authorization_error",
        )


class RateLimitExceeded(EventGateException):
    """Raised when a tenant exhausts its request window."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        limit: Optional[int] = None,
        remaining: int = 0,
        reset_time: Optional[datetime] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if retry_after:
            details["retry_after"] = retry_after
        if limit is not None:
            details["limit"] = limit
            details["remaining"] = remaining
        if reset_time is not None:
            details["reset_time"] = reset_time.isoformat()

        super().__init__(
            message=message,
            status_code=429,
            error_code="rate_limit_exceeded",
            details=details,
        )
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining
        self.reset_time = reset_time


class StorageError(EventGateException):
    """Raised when a storage adapter fails. Details are logged, not returned."""

    def __init__(self, message: str = "Failed to persist data") -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="storage_error",
        )


class NotFoundError(EventGateException):
    """Raised when a route or record does not exist."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found",
        )


class ConfigurationError(EventGateException):
    """Raised when the service is asked to do something it is not configured for."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )
