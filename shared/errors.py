"""
Shared error handling for the Data Ingestion Service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class DataLayerException(Exception):
    """Base exception for Data Ingestion Service components."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(DataLayerException):
    """Client input failed structural validation. Never retried."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(DataLayerException):
    """Record absent from the durable store."""

    status_code = 404

    def __init__(self, record_id: str, details: Optional[Dict[str, Any]] = None):
        self.record_id = record_id
        super().__init__("NOT_FOUND", f"Record {record_id} not found", details or {"id": record_id})


class PersistenceError(DataLayerException):
    """Durable store failed the operation."""

    status_code = 502

    def __init__(self, message: str = "Persistence failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_ERROR", message, details)


class StoreUnavailableError(PersistenceError):
    """Durable store unreachable, timed out or protected by an open circuit."""

    status_code = 503

    def __init__(self, message: str = "Durable store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "STORE_UNAVAILABLE"


class CacheTransientError(DataLayerException):
    """Cache adapter failure. Absorbed by callers, never surfaced to clients."""

    status_code = 503

    def __init__(self, message: str = "Cache unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_TRANSIENT_ERROR", message, details)
