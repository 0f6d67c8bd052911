"""
Shared error handling for the Feature Flag service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class FlagServiceException(Exception):
    """Base exception for Feature Flag services."""

    http_status: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(FlagServiceException):
    """Malformed request input, e.g. an evaluation context that is not a mapping."""

    http_status = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class FlagNotFoundError(FlagServiceException):
    """The requested flag does not exist for the tenant."""

    http_status = 404

    def __init__(self, flag_key: str, tenant_id: str, details: Optional[Dict[str, Any]] = None):
        self.flag_key = flag_key
        self.tenant_id = tenant_id
        super().__init__(
            "FLAG_NOT_FOUND",
            f"Flag '{flag_key}' not found for tenant '{tenant_id}'",
            {"flag_key": flag_key, "tenant_id": tenant_id, **(details or {})}
        )


class FlagDefinitionError(FlagServiceException):
    """A stored flag definition could not be decoded."""

    http_status = 422

    def __init__(self, message: str = "Invalid flag definition", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_FLAG_DEFINITION", message, details)


class ServiceError(FlagServiceException):
    """Service-related errors."""

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class ExternalServiceError(FlagServiceException):
    """External service errors."""

    http_status = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class FlagVersionNotFoundError(FlagServiceException):
    """An explicitly requested flag version does not exist."""

    http_status = 404

    def __init__(self, flag_key: str, version: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "VERSION_NOT_FOUND",
            f"Flag '{flag_key}' has no version {version}",
            {"flag_key": flag_key, "version": version, **(details or {})}
        )
