"""Error codes and exceptions shared by the write and read sides.

Every error raised synchronously to a caller derives from
``SessionServiceError`` so the API layer can map it to a response in one place.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    AGGREGATE_NOT_FOUND = "AGGREGATE_NOT_FOUND"
    REVERT_BOUNDARY_NOT_FOUND = "REVERT_BOUNDARY_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class SessionServiceError(Exception):
    """Base error with code and user-safe message."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(SessionServiceError):
    """Request rejected before any event was appended."""

    code = ErrorCode.VALIDATION_FAILED
    status_code = 400


class NotFoundError(SessionServiceError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class AggregateNotFoundError(NotFoundError):
    """No events stored for the aggregate id."""

    code = ErrorCode.AGGREGATE_NOT_FOUND

    def __init__(self, aggregate_type: str, aggregate_id: str):
        super().__init__(
            f"{aggregate_type} {aggregate_id} not found",
            {"aggregate_type": aggregate_type, "aggregate_id": aggregate_id},
        )
        self.aggregate_id = aggregate_id


class RevertBoundaryNotFound(NotFoundError):
    """History holds no event matching the revert boundary."""

    code = ErrorCode.REVERT_BOUNDARY_NOT_FOUND

    def __init__(self, aggregate_id: str):
        super().__init__(
            f"No previous update found for {aggregate_id}",
            {"aggregate_id": aggregate_id},
        )
        self.aggregate_id = aggregate_id


class PermissionDeniedError(SessionServiceError):
    code = ErrorCode.PERMISSION_DENIED
    status_code = 403


class LockTimeoutError(SessionServiceError):
    code = ErrorCode.LOCK_TIMEOUT
    status_code = 409

    def __init__(self, key: str, timeout: float):
        super().__init__(
            f"Timeout waiting for lock '{key}' after {timeout}s",
            {"key": key},
        )
        self.key = key


class ConcurrencyError(SessionServiceError):
    """Raised when the expected stream version does not match."""

    code = ErrorCode.CONCURRENCY_CONFLICT
    status_code = 409


class ExternalServiceError(SessionServiceError):
    code = ErrorCode.EXTERNAL_SERVICE_ERROR
    status_code = 502


__all__ = [
    "ErrorCode",
    "SessionServiceError",
    "ValidationError",
    "NotFoundError",
    "AggregateNotFoundError",
    "RevertBoundaryNotFound",
    "PermissionDeniedError",
    "LockTimeoutError",
    "ConcurrencyError",
    "ExternalServiceError",
]
