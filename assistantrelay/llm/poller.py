"""
Prediction create-and-poll loop.

The backend answers a create call either with a finished prediction (when the
``Prefer: wait`` hint was honoured) or with a job still in progress plus a
status URL. In the second case the poller GETs that URL at a fixed interval
until the job is terminal or the attempt budget runs out. Running out of
budget is not an error here: the last observed job is returned and the caller
decides what a still-processing job means.
"""

import asyncio
import json
from typing import Any, Dict, Optional, Tuple

import httpx

from assistantrelay.utils.logging import get_logger

from .config import PollSettings
from .exceptions import (
    BackendRequestError,
    ConfigurationError,
    RequestCancelledError,
    error_from_status,
)
from .models import PredictionJob
from .transport import invoke_with_timeout

logger = get_logger(__name__)

NO_DETAIL = "No error detail provided"


def parse_model_slug(model: str) -> Tuple[str, str]:
    """Split ``owner/name``; anything else is a configuration error."""
    owner, _, name = model.partition("/")
    if not owner or not name or "/" in name:
        raise ConfigurationError(f"Invalid model slug '{model}'", provider=model)
    return owner, name


def read_request_id(response: httpx.Response) -> Optional[str]:
    return response.headers.get("x-request-id") or response.headers.get(
        "x-replicate-request-id"
    )


def read_error_detail(response: httpx.Response) -> str:
    """
    Pull a human readable error out of a failed response.

    JSON bodies are scanned for ``detail``, ``error`` and ``message`` (first
    non-blank string wins), then an ``errors`` array is joined. Anything else
    falls back to the raw body text.
    """
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        payload = None

    if isinstance(payload, dict):
        for key in ("detail", "error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            return " | ".join(
                entry if isinstance(entry, str) else json.dumps(entry)
                for entry in errors
            )

    text = response.text.strip()
    return text or NO_DETAIL


def raise_for_backend_status(
    response: httpx.Response, operation: str, provider: Optional[str] = None
) -> None:
    """Translate a non-2xx response into the matching typed error."""
    if response.is_success:
        return
    raise error_from_status(
        response.status_code,
        operation,
        provider=provider,
        request_id=read_request_id(response),
        detail=read_error_detail(response),
    )


def read_job(
    response: httpx.Response, operation: str, provider: Optional[str] = None
) -> PredictionJob:
    """
    Parse a 2xx prediction body.

    Raises:
        BackendRequestError: If the body is not a JSON object
    """
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        payload = None

    if not isinstance(payload, dict):
        raise BackendRequestError(
            f"Malformed prediction response on {operation}",
            provider=provider,
            status_code=response.status_code,
            request_id=read_request_id(response),
            detail=response.text[:500] or NO_DETAIL,
        )
    return PredictionJob.from_payload(payload)


class JobPoller:
    """Creates predictions and follows them to a terminal state."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: PollSettings,
        token: str,
        base_url: str,
    ):
        self.client = client
        self.settings = settings
        self.token = token
        self.base_url = base_url.rstrip("/")

    def _headers(self, wait: bool = False) -> Dict[str, str]:
        headers = {
            "Authorization": f"Token {self.token}",
            "Content-Type": "application/json",
        }
        if wait and self.settings.prefer_wait:
            headers["Prefer"] = f"wait={self.settings.prefer_wait}"
        return headers

    async def create(
        self, backend: str, payload: Dict[str, Any], wait: bool = True
    ) -> PredictionJob:
        """
        POST a new prediction for ``backend``.

        Args:
            backend: ``owner/name`` backend identifier
            payload: Model input (prompt, system_prompt, image_input)
            wait: Send the synchronous wait hint

        Returns:
            The job as returned by the create endpoint
        """
        owner, name = parse_model_slug(backend)
        url = f"{self.base_url}/models/{owner}/{name}/predictions"

        logger.debug(f"Creating prediction on {backend}")
        response = await invoke_with_timeout(
            self.client,
            "POST",
            url,
            timeout=self.settings.request_timeout,
            label="create_prediction",
            headers=self._headers(wait=wait),
            json={"input": payload},
        )
        raise_for_backend_status(response, "create prediction", provider=backend)

        job = read_job(response, "create prediction", provider=backend)
        logger.info(
            f"Prediction {job.id} created on {backend} with status {job.status.value}",
            extra={"backend": backend, "prediction_id": job.id},
        )
        return job

    async def fetch(self, prediction_id: str, backend: Optional[str] = None) -> PredictionJob:
        """GET a prediction once by id."""
        response = await invoke_with_timeout(
            self.client,
            "GET",
            f"{self.base_url}/predictions/{prediction_id}",
            timeout=self.settings.request_timeout,
            label="get_prediction",
            headers=self._headers(),
        )
        raise_for_backend_status(response, "get prediction", provider=backend)
        return read_job(response, "get prediction", provider=backend)

    async def poll(
        self,
        job: PredictionJob,
        backend: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PredictionJob:
        """
        Follow ``job`` until it is terminal or the attempt budget is spent.

        Raises:
            RequestCancelledError: If ``cancel_event`` is set while waiting
        """
        poll_url = job.poll_url
        if not poll_url:
            return job

        for attempt in range(1, self.settings.max_poll_attempts + 1):
            if job.is_terminal:
                break

            await self._wait(cancel_event, backend)

            response = await invoke_with_timeout(
                self.client,
                "GET",
                poll_url,
                timeout=self.settings.request_timeout,
                label="poll_prediction",
                headers=self._headers(),
            )
            raise_for_backend_status(response, "prediction poll", provider=backend)

            job = read_job(response, "prediction poll", provider=backend)
            logger.debug(
                f"Poll {attempt}/{self.settings.max_poll_attempts} for {job.id}: "
                f"{job.status.value}"
            )

        if not job.is_terminal:
            logger.warning(
                f"Prediction {job.id} still {job.status.value} after "
                f"{self.settings.max_poll_attempts} polls",
                extra={"backend": backend, "prediction_id": job.id},
            )
        return job

    async def run(
        self,
        backend: str,
        payload: Dict[str, Any],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PredictionJob:
        """Create a prediction and poll it to completion."""
        self._check_cancelled(cancel_event, backend)
        job = await self.create(backend, payload, wait=True)
        return await self.poll(job, backend=backend, cancel_event=cancel_event)

    async def _wait(self, cancel_event: Optional[asyncio.Event], backend: Optional[str]) -> None:
        """Sleep one poll interval, waking early if the caller cancels."""
        self._check_cancelled(cancel_event, backend)
        if cancel_event is None:
            await asyncio.sleep(self.settings.poll_interval)
            return

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.settings.poll_interval)
        except asyncio.TimeoutError:
            return
        self._check_cancelled(cancel_event, backend)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event], backend: Optional[str]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError("Request cancelled by caller", provider=backend)
