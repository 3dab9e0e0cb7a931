"""
assistantrelay: a resilient client for hosted assistant-reply predictions.

The package wraps an asynchronous create-then-poll inference backend with
per-call deadlines, circuit breaking, bounded retry and a fallback cascade
across backends, and hands callers one clean reply or one typed error.
"""

__version__ = "0.1.0"

from .llm import AssistantReply, AssistantReplyClient, AssistantRequest, RelayConfig

__all__ = [
    "AssistantReply",
    "AssistantReplyClient",
    "AssistantRequest",
    "RelayConfig",
    "__version__",
]
