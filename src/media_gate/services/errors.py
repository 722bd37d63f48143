"""Failure taxonomy shared by the pipeline and its service adapters.

Adapters never let vendor or transport exceptions escape; they translate them
into one of the classes below. The ``kind`` carried by each error is what gets
persisted as an item's ``rejection_reason`` or reported as an analysis
channel's ``error_kind``.
"""

from __future__ import annotations

from enum import Enum

HTTP_BAD_REQUEST = 400
HTTP_REQUEST_TIMEOUT = 408
HTTP_TOO_EARLY = 425
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500

_TRANSIENT_4XX = {HTTP_REQUEST_TIMEOUT, HTTP_TOO_EARLY, HTTP_TOO_MANY_REQUESTS}


class ErrorKind(str, Enum):
    """Machine-readable failure and rejection codes."""

    SOURCE_MISSING = "SourceMissing"
    TRANSIENT = "TransientServiceError"
    PERMANENT = "PermanentServiceError"
    TIMEOUT = "Timeout"
    NETWORK = "NetworkError"
    CIRCUIT_OPEN = "CircuitOpen"
    MALFORMED_RESPONSE = "MalformedResponse"
    ANALYSIS_INCOMPLETE = "AnalysisIncomplete"
    POLICY_VIOLATION = "PolicyViolation"
    PUBLISH_FAILED = "PublishFailed"
    ABANDONED = "AbandonedAfterMaxRetries"


class MediaGateError(RuntimeError):
    """Base exception for pipeline failures."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class SourceMissingError(MediaGateError):
    """Raised when the local temp file for an item is gone before durable upload."""

    kind = ErrorKind.SOURCE_MISSING


class ServiceError(MediaGateError):
    """Raised by service adapters for any failed remote call."""

    def __init__(
        self,
        message: str,
        *,
        service: str,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, kind=kind)
        self.service = service
        self.status_code = status_code


class TransientServiceError(ServiceError):
    """Network, quota, timeout or 5xx failure; safe to retry with backoff."""

    kind = ErrorKind.TRANSIENT


class PermanentServiceError(ServiceError):
    """Auth, configuration or other 4xx failure; retrying will not help."""

    kind = ErrorKind.PERMANENT


class CircuitOpenError(TransientServiceError):
    """Raised without contacting the service while its circuit breaker is open."""

    kind = ErrorKind.CIRCUIT_OPEN


def is_transient_status(status_code: int) -> bool:
    """Return True if an HTTP status denotes a retryable failure."""
    return status_code >= HTTP_INTERNAL_SERVER_ERROR or status_code in _TRANSIENT_4XX


def error_for_status(service: str, status_code: int, detail: str = "") -> ServiceError:
    """Build the taxonomy error matching an unsuccessful HTTP status."""
    message = f"{service} responded with {status_code}"
    if detail:
        message = f"{message}: {detail}"
    if is_transient_status(status_code):
        return TransientServiceError(message, service=service, status_code=status_code)
    return PermanentServiceError(message, service=service, status_code=status_code)


class ItemNotFoundError(MediaGateError):
    """Raised when a submitted item id has no media record."""


class OwnershipLostError(MediaGateError):
    """Raised when an item left the status a worker was holding it in."""
