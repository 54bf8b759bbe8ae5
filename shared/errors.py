"""
Shared error handling for the marketplace admission layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AdmissionException(Exception):
    """Base exception for admission layer components."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
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


class StoreUnavailable(AdmissionException):
    """The shared store could not be reached."""

    status_code = 503

    def __init__(self, message: str = "Shared store unavailable", details: Optional[Dict[str, Any]] = None,
                 code: str = "STORE_UNAVAILABLE"):
        super().__init__(code, message, details)


class StoreTimeout(StoreUnavailable):
    """A shared store call exceeded its timeout."""

    def __init__(self, message: str = "Shared store timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STORE_TIMEOUT")


class SerializationError(AdmissionException):
    """Cached payload could not be encoded or decoded."""

    def __init__(self, message: str = "Serialization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERIALIZATION_ERROR", message, details)


class NoUsageFound(AdmissionException):
    """No token usage could be extracted from an upstream response."""

    status_code = 422

    def __init__(self, message: str = "No token usage found in response", details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_USAGE_FOUND", message, details)


class ConfigurationError(AdmissionException):
    """Invalid subject, limit or pricing configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ValidationError(AdmissionException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RateLimitError(AdmissionException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)
