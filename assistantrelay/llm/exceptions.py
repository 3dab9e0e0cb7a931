"""
Exception classes for the assistant relay.

Every failure the relay raises is an ``LLMError`` carrying a ``kind`` tag, so
retry and cascade decisions are a structural match on the error rather than a
guess from its message. ``classify_error`` is the single place that maps an
arbitrary exception (including plain-text errors that lost their structure on
the way in) onto an ``ErrorKind``.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorKind(Enum):
    """How the relay reacts to a failure."""

    TRANSIENT = "transient"  # retried in place, then cascaded
    RATE_LIMITED = "rate_limited"  # 429 or open circuit, aborts the cascade
    INVALID = "invalid"  # 422, not retried, cascade continues
    FATAL = "fatal"  # not retried, cascade continues
    CONFIGURATION = "configuration"  # not retried, not cascaded
    CANCELLED = "cancelled"  # caller gave up, not retried, not cascaded


class LLMError(Exception):
    """Base exception for all relay errors."""

    kind = ErrorKind.FATAL
    code = "UPSTREAM_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        detail: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.request_id = request_id
        self.detail = detail
        self.metadata = metadata or {}

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing summary, suitable for an HTTP error body."""
        return {
            "error": self.message,
            "code": self.code,
            "kind": self.kind.value,
            "provider": self.provider,
            "status_code": self.status_code,
            "request_id": self.request_id,
        }


class ConfigurationError(LLMError):
    """Unknown backend, malformed backend slug or missing credentials."""

    kind = ErrorKind.CONFIGURATION
    code = "CONFIG_ERROR"
    http_status = 500

    def __init__(self, message: str, **kwargs):
        if not message.startswith("CONFIG_ERROR"):
            message = f"CONFIG_ERROR: {message}"
        super().__init__(message, **kwargs)


class UpstreamTimeoutError(LLMError):
    """A single backend call exceeded its deadline."""

    kind = ErrorKind.TRANSIENT
    code = "UPSTREAM_TIMEOUT"
    http_status = 504

    def __init__(self, label: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(f"UPSTREAM_TIMEOUT: {label}", **kwargs)
        self.label = label
        self.timeout = timeout


class TransientBackendError(LLMError):
    """5xx from the backend."""

    kind = ErrorKind.TRANSIENT
    code = "UPSTREAM_UNAVAILABLE"
    http_status = 502


class RateLimitOrCapacityError(LLMError):
    """429 from the backend, or a backend whose circuit is open."""

    kind = ErrorKind.RATE_LIMITED
    code = "UPSTREAM_RATE_LIMITED"
    http_status = 503

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class CircuitOpenError(RateLimitOrCapacityError):
    """Rejected without a network call because the backend's circuit is open."""

    code = "UPSTREAM_CIRCUIT_OPEN"

    def __init__(self, backend: str, open_until: Optional[float] = None):
        super().__init__(f"UPSTREAM_CIRCUIT_OPEN: {backend}", provider=backend)
        self.open_until = open_until


class InvalidRequestError(LLMError):
    """422 from the backend: the input was rejected."""

    kind = ErrorKind.INVALID
    code = "UPSTREAM_INVALID_REQUEST"
    http_status = 502


class BackendRequestError(LLMError):
    """Any other non-2xx response."""


class PredictionFailedError(LLMError):
    """The prediction ended failed or canceled, or never finished polling."""


class EmptyResponseError(LLMError):
    """The prediction succeeded but carried no extractable text."""

    code = "UPSTREAM_EMPTY_RESPONSE"


class RequestCancelledError(LLMError):
    """The caller signalled cancellation while a prediction was in flight."""

    kind = ErrorKind.CANCELLED
    code = "REQUEST_CANCELLED"
    http_status = 499


# Substring markers for errors that crossed a process boundary as plain text.
# Checked in order; the first match wins.
_TEXT_MARKERS = (
    ("CONFIG_ERROR", ErrorKind.CONFIGURATION),
    ("UPSTREAM_CIRCUIT_OPEN", ErrorKind.RATE_LIMITED),
    ("429", ErrorKind.RATE_LIMITED),
    ("UPSTREAM_TIMEOUT", ErrorKind.TRANSIENT),
    ("transient", ErrorKind.TRANSIENT),
    ("502", ErrorKind.TRANSIENT),
    ("503", ErrorKind.TRANSIENT),
    ("422", ErrorKind.INVALID),
)


def classify_status_code(status_code: int) -> ErrorKind:
    """Map an upstream HTTP status code onto an error kind."""
    if status_code >= 500:
        return ErrorKind.TRANSIENT
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 422:
        return ErrorKind.INVALID
    return ErrorKind.FATAL


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify an exception into an ``ErrorKind``.

    Structured information wins: the error's own tag, then an HTTP status code,
    then known timeout types. Scanning the message text is the last resort.

    Args:
        error: The exception to classify

    Returns:
        The error kind
    """
    if isinstance(error, LLMError):
        return error.kind

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return classify_status_code(status_code)

    if isinstance(error, httpx.HTTPStatusError):
        return classify_status_code(error.response.status_code)

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TRANSIENT

    message = str(error).lower()
    for marker, kind in _TEXT_MARKERS:
        if marker.lower() in message:
            return kind

    return ErrorKind.FATAL


def error_from_status(
    status_code: int,
    operation: str,
    provider: Optional[str] = None,
    request_id: Optional[str] = None,
    detail: Optional[str] = None,
) -> LLMError:
    """
    Build the typed error for a non-2xx backend response.

    The message keeps the status code and request id inline so the error still
    classifies correctly if it is ever flattened to text.

    Args:
        status_code: Upstream HTTP status
        operation: Human readable operation name, e.g. "create prediction"
        provider: Backend identifier
        request_id: Upstream correlation id, when the response carried one
        detail: Upstream error detail

    Returns:
        An ``LLMError`` subclass matching the status code
    """
    suffix = f"{status_code}"
    if request_id:
        suffix += f" (request_id={request_id})"
    if detail:
        suffix += f" - {detail}"

    kwargs = {
        "provider": provider,
        "status_code": status_code,
        "request_id": request_id,
        "detail": detail,
    }

    kind = classify_status_code(status_code)
    if kind == ErrorKind.RATE_LIMITED:
        return RateLimitOrCapacityError(f"Rate limit on {operation}: {suffix}", **kwargs)
    if kind == ErrorKind.TRANSIENT:
        return TransientBackendError(f"Transient {operation} failure: {suffix}", **kwargs)
    if kind == ErrorKind.INVALID:
        return InvalidRequestError(f"Invalid request on {operation}: {suffix}", **kwargs)
    return BackendRequestError(f"{operation.capitalize()} failed: {suffix}", **kwargs)
