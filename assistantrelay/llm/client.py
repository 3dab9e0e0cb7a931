"""
Assistant reply client.

This is the entry point callers use. It composes the prompt from the
conversation, builds the candidate backend list and drives the fallback
cascade, returning either one ``AssistantReply`` or one typed error. Besides
the blocking ``generate_reply`` it offers a two-step ``start_reply`` /
``get_reply_status`` pair for callers that would rather not hold a request
open while a prediction runs.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from assistantrelay.utils.logging import get_logger, log_elapsed

from .circuit_breaker import CircuitBreakerRegistry
from .config import RelayConfig
from .exceptions import ConfigurationError, EmptyResponseError, PredictionFailedError
from .fallback import FallbackCascade, build_candidates
from .models import (
    AssistantReply,
    AssistantRequest,
    GuardResult,
    PendingReply,
    PredictionJob,
    PredictionStatus,
    ReplyState,
    ReplyStatus,
)
from .output import normalize_output
from .poller import JobPoller
from .retry import RetryExecutor

logger = get_logger(__name__)

DEFAULT_REFUSAL = "I can't help with that request."

InputGuard = Callable[[str, Optional[str]], GuardResult]
OutputGuard = Callable[[str], GuardResult]


def compose_prompt(request: AssistantRequest, max_chars: int = 12_000) -> str:
    """Flatten history and the new user turn into a single prompt."""
    history = "\n".join(
        f"{entry.role.upper()}: {entry.content}" for entry in request.history
    )
    prompt = "\n".join(
        [
            "Conversation history:",
            history or "No prior history.",
            "",
            f"User request: {request.user_prompt}",
            "",
            "Return a concise, actionable response.",
        ]
    )
    return prompt[:max_chars]


def build_payload(request: AssistantRequest, config: RelayConfig) -> Dict[str, Any]:
    """Model input for the create call."""
    payload: Dict[str, Any] = {
        "prompt": compose_prompt(request, config.max_prompt_chars),
        "system_prompt": request.system_prompt[: config.max_system_prompt_chars],
    }
    if request.image_url:
        payload["image_input"] = [request.image_url]
    return payload


def job_to_reply(job: PredictionJob, backend: str) -> AssistantReply:
    """
    Convert a finished job into a reply.

    Raises:
        PredictionFailedError: If the job did not succeed (including a job
            still processing when polling gave up)
        EmptyResponseError: If it succeeded without any text
    """
    if not job.succeeded:
        message = job.error or (
            f"Prediction {job.id} did not finish (status: {job.status.value})"
            if not job.is_terminal
            else "Prediction failed"
        )
        raise PredictionFailedError(
            message, provider=backend, metadata={"prediction_id": job.id, "status": job.status.value}
        )

    return AssistantReply(
        backend_used=backend,
        text=normalize_output(job.output, provider=backend),
        input_tokens=job.input_tokens,
        output_tokens=job.output_tokens,
    )


class AssistantReplyClient:
    """
    Resilient client for assistant replies.

    Args:
        config: Relay configuration, loaded from the environment when omitted
        registry: Circuit breaker registry; share one across clients to share
            circuit state within the process
        http_client: Async HTTP client; one is created (and closed by
            ``aclose``) when omitted
        input_guard: Optional moderation hook run before any backend call
        output_guard: Optional moderation hook run on the reply text
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        registry: Optional[CircuitBreakerRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        input_guard: Optional[InputGuard] = None,
        output_guard: Optional[OutputGuard] = None,
    ):
        self.config = config or RelayConfig.from_environment()
        self.registry = registry or CircuitBreakerRegistry(
            failure_threshold=self.config.resilience.circuit_failure_threshold,
            cooldown_seconds=self.config.resilience.circuit_cooldown,
        )
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.config.poll.request_timeout
        )
        self.input_guard = input_guard
        self.output_guard = output_guard

        self.executor = RetryExecutor(
            self.registry,
            max_transient_retries=self.config.resilience.max_transient_retries,
        )
        self.cascade = FallbackCascade(
            self.executor, rate_limit_scope=self.config.resilience.rate_limit_scope
        )

        issues = self.config.validate()
        if issues:
            logger.warning(f"Relay configuration issues: {', '.join(issues)}")

    def _poller(self) -> JobPoller:
        return JobPoller(
            self.http_client,
            self.config.poll,
            token=self.config.require_token(),
            base_url=self.config.api_base,
        )

    def candidates_for(self, request: AssistantRequest) -> List[str]:
        """
        Resolve the candidate backends for ``request``.

        Raises:
            ConfigurationError: For an invalid configured backend, a requested
                backend outside the allow-list, or an empty candidate list
        """
        default_model, fallback_model = self.config.resolve_model_config()
        requested = request.model or default_model
        if not self.config.is_allowed(requested):
            raise ConfigurationError(
                f"Unsupported model '{requested}'", provider=requested
            )

        candidates = build_candidates(
            requested,
            fallback_model,
            self.config.extra_models,
            self.config.allowed_models,
        )
        if not candidates:
            raise ConfigurationError("No allow-listed backend available")
        return candidates

    async def generate_reply(
        self,
        request: AssistantRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AssistantReply:
        """
        Generate one assistant reply.

        Args:
            request: Prompt, history and optional image/backend choice
            cancel_event: Set it to stop polling promptly

        Returns:
            The reply from the first backend that succeeded

        Raises:
            LLMError: The single terminal error for this call
        """
        started_at = time.monotonic()

        guarded = self._check_input(request)
        if guarded is not None:
            return guarded

        candidates = self.candidates_for(request)
        poller = self._poller()
        payload = build_payload(request, self.config)

        async def attempt(backend: str) -> AssistantReply:
            job = await poller.run(backend, payload, cancel_event=cancel_event)
            return job_to_reply(job, backend)

        backend, reply = await self.cascade.run(candidates, attempt)
        log_elapsed(logger, f"Assistant reply generated by {backend}", started_at, backend=backend)
        return self._check_output(reply)

    async def start_reply(
        self, request: AssistantRequest
    ) -> Union[PendingReply, AssistantReply]:
        """
        Create a prediction without waiting for it.

        The same circuit, retry and cascade rules apply to the create call.
        Use ``get_reply_status`` with the returned id to collect the reply.
        Input blocked by the guard comes back immediately as a blocked
        ``AssistantReply`` and nothing is created.
        """
        guarded = self._check_input(request)
        if guarded is not None:
            return guarded

        candidates = self.candidates_for(request)
        poller = self._poller()
        payload = build_payload(request, self.config)

        async def attempt(backend: str) -> PredictionJob:
            return await poller.create(backend, payload, wait=False)

        backend, job = await self.cascade.run(candidates, attempt)
        return PendingReply(prediction_id=job.id, backend_used=backend, poll_url=job.poll_url)

    async def get_reply_status(
        self, prediction_id: str, backend: Optional[str] = None
    ) -> ReplyStatus:
        """
        Check a prediction started with ``start_reply``.

        A failed or canceled prediction, or one that succeeded without text,
        is reported as ``FAILED`` rather than raised; transport and status
        errors propagate.
        """
        job = await self._poller().fetch(prediction_id, backend=backend)

        if not job.is_terminal:
            return ReplyStatus(state=ReplyState.PENDING, prediction_id=prediction_id)

        if job.status != PredictionStatus.SUCCEEDED:
            return ReplyStatus(
                state=ReplyState.FAILED,
                prediction_id=prediction_id,
                error=job.error or "Prediction failed",
            )

        try:
            reply = job_to_reply(job, backend)
        except EmptyResponseError as e:
            return ReplyStatus(
                state=ReplyState.FAILED, prediction_id=prediction_id, error=e.message
            )
        return ReplyStatus(
            state=ReplyState.SUCCEEDED,
            prediction_id=prediction_id,
            reply=self._check_output(reply),
        )

    def circuit_status(self) -> Dict[str, Dict[str, Any]]:
        return self.registry.snapshot()

    def _check_input(self, request: AssistantRequest) -> Optional[AssistantReply]:
        if self.input_guard is None:
            return None
        verdict = self.input_guard(request.user_prompt, request.image_url)
        if not verdict.blocked:
            return None
        logger.warning(f"Input blocked by guard: {verdict.flags}")
        return AssistantReply(
            backend_used=None,
            text=verdict.safe_reply or DEFAULT_REFUSAL,
            blocked=True,
            safety_flags=list(verdict.flags),
        )

    def _check_output(self, reply: AssistantReply) -> AssistantReply:
        if self.output_guard is None:
            return reply
        verdict = self.output_guard(reply.text)
        if not verdict.blocked:
            return reply
        logger.warning(f"Output from {reply.backend_used} blocked by guard: {verdict.flags}")
        reply.text = verdict.safe_reply or DEFAULT_REFUSAL
        reply.blocked = True
        reply.safety_flags = list(verdict.flags)
        return reply

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
