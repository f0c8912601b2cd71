"""
Custom exceptions for the avrostash service.

Per-record errors (schema and decoding) are raised by the core components
and contained by the pipeline; API errors carry an HTTP status code and
error details for the JSON error response.
"""

from typing import Any, Dict, Optional


class AvroStashException(Exception):
    """Base exception for avrostash."""

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


class ConfigurationError(AvroStashException):
    """Raised when the policy configuration cannot be loaded."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )


class SchemaUnavailableError(AvroStashException):
    """Raised when no schema can be resolved for an event."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=422,
            error_code="schema_unavailable",
            details=details,
        )


class DecodeError(AvroStashException):
    """Raised when an event body cannot be decoded with its schema."""

    reason = "decode_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=422,
            error_code=self.reason,
            details=details,
        )


class IncompleteRecordError(DecodeError):
    """Raised when the body ends before the schema is satisfied."""

    reason = "incomplete_record"


class MalformedRecordError(DecodeError):
    """Raised for any other structural decoding failure."""

    reason = "malformed_record"
