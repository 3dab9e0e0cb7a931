"""
Configuration for the assistant relay.

Backend identifiers, credentials and resilience tunables are read from the
environment (a local ``.env`` file is honoured). Reading only fails on a
malformed number; ``resolve_model_config`` validates the backend choice at
first use. Both raise ``ConfigurationError``.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from .exceptions import ConfigurationError

# Load environment variables
load_dotenv()


ALLOWED_MODELS: Tuple[str, ...] = (
    "openai/gpt-5-mini",
    "openai/gpt-4o-mini",
    "anthropic/claude-4.5-sonnet",
    "anthropic/claude-4.5-haiku",
)

# Known-good backends appended to every candidate list
EXTRA_FALLBACK_MODELS: Tuple[str, ...] = (
    "openai/gpt-4o-mini",
    "anthropic/claude-4.5-haiku",
)

DEFAULT_MODEL = "openai/gpt-5-mini"
DEFAULT_FALLBACK_MODEL = "openai/gpt-4o-mini"
DEFAULT_API_BASE = "https://api.replicate.com/v1"


def _env_number(name: str, default: str, cast: Callable[[str], Any]) -> Any:
    """Read a numeric environment variable, raising ``ConfigurationError`` if malformed."""
    value = os.getenv(name, default)
    try:
        return cast(value)
    except ValueError:
        raise ConfigurationError(f"Invalid {name}: {value!r}") from None


class RateLimitScope(Enum):
    """How far a rate-limit or open-circuit signal reaches."""

    CASCADE = "cascade"  # stop the whole cascade
    BACKEND = "backend"  # skip only the limited backend


@dataclass
class PollSettings:
    """Timing for a single prediction run."""

    request_timeout: float = 20.0  # seconds, per create/poll call
    poll_interval: float = 1.2  # seconds between polls
    max_poll_attempts: int = 20
    prefer_wait: Optional[int] = 60  # synchronous wait hint sent on create


@dataclass
class ResilienceSettings:
    """Retry and circuit breaker tunables."""

    max_transient_retries: int = 2
    circuit_failure_threshold: int = 3
    circuit_cooldown: float = 60.0  # seconds
    rate_limit_scope: RateLimitScope = RateLimitScope.CASCADE


@dataclass
class RelayConfig:
    """Complete relay configuration."""

    api_token: Optional[str] = None
    api_base: str = DEFAULT_API_BASE
    default_model: str = DEFAULT_MODEL
    fallback_model: str = DEFAULT_FALLBACK_MODEL
    allowed_models: Tuple[str, ...] = ALLOWED_MODELS
    extra_models: Tuple[str, ...] = EXTRA_FALLBACK_MODELS
    poll: PollSettings = field(default_factory=PollSettings)
    resilience: ResilienceSettings = field(default_factory=ResilienceSettings)
    max_prompt_chars: int = 12_000
    max_system_prompt_chars: int = 4_000
    # Problems noticed while reading the environment, reported by validate()
    environment_issues: List[str] = field(default_factory=list)

    @classmethod
    def from_environment(cls) -> "RelayConfig":
        """Create configuration from environment variables."""
        config = cls()

        config.api_token = os.getenv("REPLICATE_API_TOKEN") or None
        config.api_base = os.getenv("REPLICATE_API_BASE", DEFAULT_API_BASE).rstrip("/")
        config.default_model = os.getenv("REPLICATE_DEFAULT_MODEL") or DEFAULT_MODEL
        config.fallback_model = (
            os.getenv("REPLICATE_FALLBACK_MODEL") or DEFAULT_FALLBACK_MODEL
        )

        prefer_wait = os.getenv("ASSISTANT_PREFER_WAIT", "60")
        config.poll = PollSettings(
            request_timeout=_env_number("ASSISTANT_REQUEST_TIMEOUT", "20", float),
            poll_interval=_env_number("ASSISTANT_POLL_INTERVAL", "1.2", float),
            max_poll_attempts=_env_number("ASSISTANT_MAX_POLL_ATTEMPTS", "20", int),
            prefer_wait=(
                _env_number("ASSISTANT_PREFER_WAIT", "60", int)
                if prefer_wait.strip()
                else None
            ),
        )

        scope = os.getenv("ASSISTANT_RATE_LIMIT_SCOPE", "cascade")
        try:
            rate_limit_scope = RateLimitScope(scope.lower())
        except ValueError:
            rate_limit_scope = RateLimitScope.CASCADE
            config.environment_issues.append(
                f"Unknown ASSISTANT_RATE_LIMIT_SCOPE {scope!r}, using 'cascade'"
            )

        config.resilience = ResilienceSettings(
            max_transient_retries=_env_number("ASSISTANT_MAX_TRANSIENT_RETRIES", "2", int),
            circuit_failure_threshold=_env_number(
                "ASSISTANT_CIRCUIT_FAILURE_THRESHOLD", "3", int
            ),
            circuit_cooldown=_env_number("ASSISTANT_CIRCUIT_COOLDOWN", "60", float),
            rate_limit_scope=rate_limit_scope,
        )

        return config

    def is_allowed(self, model: str) -> bool:
        """Whether ``model`` is on the allow-list."""
        return model in self.allowed_models

    def resolve_model_config(self) -> Tuple[str, str]:
        """
        Validate and return the configured (default, fallback) backends.

        Raises:
            ConfigurationError: If either backend is outside the allow-list
        """
        if not self.is_allowed(self.default_model):
            raise ConfigurationError(
                f"Unsupported default model '{self.default_model}'"
            )
        if not self.is_allowed(self.fallback_model):
            raise ConfigurationError(
                f"Unsupported fallback model '{self.fallback_model}'"
            )
        return self.default_model, self.fallback_model

    def require_token(self) -> str:
        """Return the API token or raise ``ConfigurationError``."""
        if not self.api_token:
            raise ConfigurationError("Replicate token is not configured")
        return self.api_token

    def validate(self) -> List[str]:
        """Validate configuration and return list of issues."""
        issues = list(self.environment_issues)

        if not self.api_token:
            issues.append("REPLICATE_API_TOKEN is not set")

        for label, model in (
            ("default", self.default_model),
            ("fallback", self.fallback_model),
        ):
            if not self.is_allowed(model):
                issues.append(f"Unsupported {label} model '{model}'")

        if self.poll.request_timeout <= 0:
            issues.append(f"Invalid request timeout: {self.poll.request_timeout}")

        if self.poll.poll_interval < 0:
            issues.append(f"Invalid poll interval: {self.poll.poll_interval}")

        if self.poll.max_poll_attempts < 0:
            issues.append(f"Invalid max poll attempts: {self.poll.max_poll_attempts}")

        if self.resilience.max_transient_retries < 0:
            issues.append(
                f"Invalid max transient retries: {self.resilience.max_transient_retries}"
            )

        if self.resilience.circuit_failure_threshold < 1:
            issues.append(
                "Invalid circuit failure threshold: "
                f"{self.resilience.circuit_failure_threshold}"
            )

        return issues

    def describe(self) -> Dict[str, Any]:
        """Configuration summary with the token masked."""
        token = self.api_token or ""
        return {
            "api_base": self.api_base,
            "api_token": f"{token[:4]}…" if token else None,
            "default_model": self.default_model,
            "fallback_model": self.fallback_model,
            "allowed_models": list(self.allowed_models),
            "extra_models": list(self.extra_models),
            "request_timeout": self.poll.request_timeout,
            "poll_interval": self.poll.poll_interval,
            "max_poll_attempts": self.poll.max_poll_attempts,
            "prefer_wait": self.poll.prefer_wait,
            "max_transient_retries": self.resilience.max_transient_retries,
            "circuit_failure_threshold": self.resilience.circuit_failure_threshold,
            "circuit_cooldown": self.resilience.circuit_cooldown,
            "rate_limit_scope": self.resilience.rate_limit_scope.value,
        }


def resolve_model_config() -> Tuple[str, str]:
    """Validate the backends named by the environment."""
    return RelayConfig.from_environment().resolve_model_config()
