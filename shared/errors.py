"""
Shared error handling for the Tribute Cache service.
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


class CacheLayerException(Exception):
    """Base exception for the cache layer."""

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


class StoreTierUnavailable(CacheLayerException):
    """A cache tier could not be reached."""

    def __init__(self, tier: str, message: str = "Cache tier unavailable", details: Optional[Dict[str, Any]] = None):
        self.tier = tier
        super().__init__("STORE_TIER_UNAVAILABLE", f"{tier}: {message}", details)


class SerializationError(CacheLayerException):
    """A payload could not be encoded or decoded as JSON."""

    def __init__(self, message: str = "Payload is not valid JSON", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERIALIZATION_ERROR", message, details)


class ConfigurationMissing(CacheLayerException):
    """A configuration value is absent or unusable."""

    def __init__(self, setting: str, message: str = "Configuration missing", details: Optional[Dict[str, Any]] = None):
        self.setting = setting
        super().__init__("CONFIGURATION_MISSING", f"{setting}: {message}", details)


class AuthenticationError(CacheLayerException):
    """Authentication-related errors."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(CacheLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ExternalServiceError(CacheLayerException):
    """External service errors."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
