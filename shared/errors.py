"""
Shared error handling for the Request Pipeline.
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


class PipelineException(Exception):
    """Base exception for pipeline services."""

    status_code: int = 500

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


class ApiKeyError(PipelineException):
    """Missing or unknown API key."""

    status_code = 401

    def __init__(self, message: str = "Missing or invalid API key", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHORIZED", message, details)


class QuotaExceededError(PipelineException):
    """Usage plan quota exhausted for an API key."""

    status_code = 429

    def __init__(self, message: str = "Usage plan quota exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("QUOTA_EXCEEDED", message, details)


class AuthenticationError(PipelineException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHORIZED", message, details)


class AuthFault(PipelineException):
    """The authorizer denied the credential."""

    status_code = 403

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__("FORBIDDEN", message, details)


class AuthBackendError(PipelineException):
    """The authorizer could not reach a decision.

    Distinct from a deny: callers fail closed but report it as a fault.
    """

    status_code = 403

    def __init__(self, message: str = "Authorizer unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZER_UNAVAILABLE", message, details)


class ValidationError(PipelineException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ExecutionError(PipelineException):
    """The primary compute unit raised."""

    status_code = 502

    def __init__(self, message: str = "Execution failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXECUTION_ERROR", message, details)


class ExecutionTimeout(PipelineException):
    """The primary compute unit did not finish within the gateway timeout."""

    status_code = 504

    def __init__(self, message: str = "Execution timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXECUTION_TIMEOUT", message, details)


class QueueError(PipelineException):
    """Queue backend errors."""

    def __init__(self, message: str = "Queue unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("QUEUE_ERROR", message, details)


class EnqueueFailure(PipelineException):
    """An outcome could not be delivered after bounded retries."""

    def __init__(self, message: str = "Outcome could not be enqueued", details: Optional[Dict[str, Any]] = None):
        super().__init__("ENQUEUE_FAILURE", message, details)


class PersistFailure(PipelineException):
    """A store write failed; the queue item stays unacknowledged."""

    def __init__(self, message: str = "Record could not be persisted", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSIST_FAILURE", message, details)


class StoreError(PipelineException):
    """Persistent store errors."""

    def __init__(self, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)
