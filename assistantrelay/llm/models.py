"""
Data types shared across the relay: prediction jobs as reported by the backend,
the inbound assistant request and the uniform reply handed back to callers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class PredictionStatus(Enum):
    """Lifecycle of a backend prediction."""

    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PredictionStatus.SUCCEEDED,
            PredictionStatus.FAILED,
            PredictionStatus.CANCELED,
        )

    @classmethod
    def parse(cls, value: Any) -> "PredictionStatus":
        """Unknown or missing statuses are treated as still processing."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.PROCESSING


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


@dataclass
class PredictionJob:
    """A prediction as last observed from the create or poll endpoint."""

    id: str
    status: PredictionStatus
    output: Any = None
    error: Optional[str] = None
    poll_url: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PredictionJob":
        """Build a job from the backend's JSON body."""
        urls = payload.get("urls") or {}
        metrics = payload.get("metrics") or {}
        error = payload.get("error")
        return cls(
            id=str(payload.get("id") or ""),
            status=PredictionStatus.parse(payload.get("status")),
            output=payload.get("output"),
            error=str(error) if error else None,
            poll_url=urls.get("get") if isinstance(urls, dict) else None,
            input_tokens=_optional_int(
                metrics.get("input_token_count") if isinstance(metrics, dict) else None
            ),
            output_tokens=_optional_int(
                metrics.get("output_token_count") if isinstance(metrics, dict) else None
            ),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.status == PredictionStatus.SUCCEEDED


@dataclass
class ChatMessage:
    """One prior turn of the conversation."""

    role: str
    content: str


@dataclass
class AssistantRequest:
    """Everything the relay needs to ask for one assistant reply."""

    system_prompt: str
    user_prompt: str
    history: List[ChatMessage] = field(default_factory=list)
    image_url: Optional[str] = None
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssistantRequest":
        """Accept both camelCase (web payloads) and snake_case keys."""
        history = [
            entry if isinstance(entry, ChatMessage) else ChatMessage(
                role=str(entry.get("role", "user")),
                content=str(entry.get("content", "")),
            )
            for entry in data.get("history") or []
        ]
        return cls(
            system_prompt=data.get("systemPrompt", data.get("system_prompt", "")),
            user_prompt=data.get("userPrompt", data.get("user_prompt", "")),
            history=history,
            image_url=data.get("imageUrl", data.get("image_url")),
            model=data.get("model"),
        )


@dataclass
class AssistantReply:
    """The only success value the relay returns."""

    backend_used: Optional[str]
    text: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    blocked: bool = False
    safety_flags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Outbound wire shape."""
        return {
            "backendUsed": self.backend_used,
            "text": self.text,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
        }


@dataclass
class PendingReply:
    """A prediction that was created but not awaited."""

    prediction_id: str
    backend_used: str
    poll_url: Optional[str] = None


class ReplyState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ReplyStatus:
    """Result of checking on a pending reply."""

    state: ReplyState
    prediction_id: str
    reply: Optional[AssistantReply] = None
    error: Optional[str] = None


@dataclass
class GuardResult:
    """Verdict of an input or output guard hook."""

    blocked: bool = False
    flags: List[str] = field(default_factory=list)
    safe_reply: Optional[str] = None
