"""
Resilient assistant-reply client.

This module exposes the client, its configuration and the typed errors a
caller can receive.
"""

from .circuit_breaker import CircuitBreakerRegistry
from .client import AssistantReplyClient
from .config import RateLimitScope, RelayConfig, resolve_model_config
from .exceptions import (
    BackendRequestError,
    CircuitOpenError,
    ConfigurationError,
    EmptyResponseError,
    ErrorKind,
    InvalidRequestError,
    LLMError,
    PredictionFailedError,
    RateLimitOrCapacityError,
    RequestCancelledError,
    TransientBackendError,
    UpstreamTimeoutError,
    classify_error,
)
from .models import (
    AssistantReply,
    AssistantRequest,
    ChatMessage,
    GuardResult,
    PendingReply,
    ReplyState,
    ReplyStatus,
)

__all__ = [
    "AssistantReplyClient",
    "AssistantReply",
    "AssistantRequest",
    "ChatMessage",
    "GuardResult",
    "PendingReply",
    "ReplyState",
    "ReplyStatus",
    "CircuitBreakerRegistry",
    "RelayConfig",
    "RateLimitScope",
    "resolve_model_config",
    "ErrorKind",
    "LLMError",
    "ConfigurationError",
    "UpstreamTimeoutError",
    "TransientBackendError",
    "RateLimitOrCapacityError",
    "CircuitOpenError",
    "InvalidRequestError",
    "BackendRequestError",
    "PredictionFailedError",
    "EmptyResponseError",
    "RequestCancelledError",
    "classify_error",
]
