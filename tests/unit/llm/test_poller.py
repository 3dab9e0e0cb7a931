"""Tests for the prediction create-and-poll loop."""

import asyncio
import json

import httpx
import pytest

from assistantrelay.llm.config import PollSettings
from assistantrelay.llm.exceptions import (
    BackendRequestError,
    ConfigurationError,
    InvalidRequestError,
    RateLimitOrCapacityError,
    RequestCancelledError,
    TransientBackendError,
)
from assistantrelay.llm.models import PredictionStatus
from assistantrelay.llm.poller import (
    NO_DETAIL,
    JobPoller,
    parse_model_slug,
    read_error_detail,
    read_job,
    read_request_id,
)

API_BASE = "https://api.replicate.test/v1"
BACKEND = "openai/gpt-5-mini"
PAYLOAD = {"prompt": "Hello", "system_prompt": "Be brief."}


@pytest.fixture
def poller(http_client, poll_settings):
    return JobPoller(http_client, poll_settings, token="r8_test_token", base_url=API_BASE + "/")


class TestParseModelSlug:
    """Test backend identifier parsing."""

    def test_valid(self):
        assert parse_model_slug("anthropic/claude-4.5-haiku") == ("anthropic", "claude-4.5-haiku")

    @pytest.mark.parametrize("slug", ["gpt-5-mini", "/gpt-5-mini", "openai/", "a/b/c", ""])
    def test_invalid(self, slug):
        with pytest.raises(ConfigurationError, match="Invalid model slug"):
            parse_model_slug(slug)


class TestReadErrorDetail:
    """Test error detail extraction from failed responses."""

    def test_detail_first(self):
        response = httpx.Response(400, json={"detail": "d", "error": "e", "message": "m"})
        assert read_error_detail(response) == "d"

    def test_blank_fields_are_skipped(self):
        response = httpx.Response(400, json={"detail": "  ", "error": None, "message": "m"})
        assert read_error_detail(response) == "m"

    def test_errors_array(self):
        response = httpx.Response(422, json={"errors": ["prompt too long", {"field": "image"}]})
        assert read_error_detail(response) == 'prompt too long | {"field": "image"}'

    def test_raw_text(self):
        response = httpx.Response(502, text="<html>Bad Gateway</html>")
        assert read_error_detail(response) == "<html>Bad Gateway</html>"

    def test_empty_body(self):
        assert read_error_detail(httpx.Response(500)) == NO_DETAIL

    def test_request_id_headers(self):
        assert read_request_id(httpx.Response(500, headers={"x-request-id": "a"})) == "a"
        assert read_request_id(httpx.Response(500, headers={"x-replicate-request-id": "b"})) == "b"
        assert read_request_id(httpx.Response(500)) is None


class TestReadJob:
    """Test parsing of successful prediction bodies."""

    def test_object_body(self):
        job = read_job(httpx.Response(200, json={"id": "p1", "status": "succeeded"}), "prediction poll")
        assert job.id == "p1"
        assert job.succeeded

    @pytest.mark.parametrize("content", [b"null", b"[]", b'"ok"', b"not json", b""])
    def test_malformed_body(self, content):
        response = httpx.Response(201, content=content, headers={"x-request-id": "req-3"})

        with pytest.raises(BackendRequestError, match="Malformed prediction response on create prediction") as exc_info:
            read_job(response, "create prediction", provider=BACKEND)

        error = exc_info.value
        assert error.status_code == 201
        assert error.request_id == "req-3"
        assert error.provider == BACKEND
        assert error.detail == (content.decode() or NO_DETAIL)


class TestCreate:
    """Test prediction creation."""

    @pytest.mark.asyncio
    async def test_create_request_shape(self, poller, backend, make_prediction, respond):
        backend.on_create(BACKEND, respond(make_prediction("p1", "starting")))

        job = await poller.create(BACKEND, PAYLOAD)

        request = backend.creates()[0]
        assert str(request.url) == f"{API_BASE}/models/openai/gpt-5-mini/predictions"
        assert request.headers["Authorization"] == "Token r8_test_token"
        assert request.headers["Prefer"] == "wait=60"
        assert json.loads(request.content) == {"input": PAYLOAD}
        assert job.id == "p1"
        assert job.status == PredictionStatus.STARTING
        assert job.poll_url == f"{API_BASE}/predictions/p1"

    @pytest.mark.asyncio
    async def test_create_without_wait_hint(self, poller, backend, make_prediction, respond):
        backend.on_create(BACKEND, respond(make_prediction("p1", "starting")))

        await poller.create(BACKEND, PAYLOAD, wait=False)

        assert "Prefer" not in backend.creates()[0].headers

    @pytest.mark.asyncio
    async def test_invalid_slug_makes_no_request(self, poller, backend):
        with pytest.raises(ConfigurationError):
            await poller.create("not-a-slug", PAYLOAD)
        assert backend.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,error_type",
        [
            (503, TransientBackendError),
            (500, TransientBackendError),
            (429, RateLimitOrCapacityError),
            (422, InvalidRequestError),
            (401, BackendRequestError),
        ],
    )
    async def test_non_2xx_create(self, poller, backend, status_code, error_type):
        backend.on_create(
            BACKEND,
            httpx.Response(
                status_code,
                json={"detail": "upstream says no"},
                headers={"x-request-id": "req-42"},
            ),
        )

        with pytest.raises(error_type) as exc_info:
            await poller.create(BACKEND, PAYLOAD)

        error = exc_info.value
        assert error.status_code == status_code
        assert error.request_id == "req-42"
        assert error.detail == "upstream says no"
        assert error.provider == BACKEND
        assert "request_id=req-42" in str(error)


class TestPoll:
    """Test the poll loop."""

    @pytest.mark.asyncio
    async def test_synchronous_success_makes_no_polls(self, poller, backend, make_prediction, respond):
        """A job that finished under the wait hint is returned without polling."""
        backend.on_create(BACKEND, respond(make_prediction("p1", "succeeded", output="Hi")))

        job = await poller.run(BACKEND, PAYLOAD)

        assert job.succeeded
        assert backend.polls() == []

    @pytest.mark.asyncio
    async def test_missing_poll_url_returns_job_as_is(self, poller, backend, make_prediction, respond):
        backend.on_create(BACKEND, respond(make_prediction("p1", "processing", poll=False)))

        job = await poller.run(BACKEND, PAYLOAD)

        assert job.status == PredictionStatus.PROCESSING
        assert backend.polls() == []

    @pytest.mark.asyncio
    async def test_polls_until_terminal(self, poller, backend, make_prediction, respond):
        backend.on_create(BACKEND, respond(make_prediction("p1", "starting")))
        backend.on_poll(
            "p1",
            respond(make_prediction("p1", "processing"), status_code=200),
            respond(make_prediction("p1", "succeeded", output=["Hello"]), status_code=200),
        )

        job = await poller.run(BACKEND, PAYLOAD)

        assert job.succeeded
        assert job.output == ["Hello"]
        assert len(backend.polls()) == 2
        assert str(backend.polls()[0].url) == f"{API_BASE}/predictions/p1"
        assert "Prefer" not in backend.polls()[0].headers

    @pytest.mark.asyncio
    async def test_failed_prediction_is_returned(self, poller, backend, make_prediction, respond):
        """Terminal failures are data here; the caller decides what they mean."""
        backend.on_create(BACKEND, respond(make_prediction("p1", "starting")))
        backend.on_poll("p1", respond(make_prediction("p1", "failed", error="CUDA OOM"), status_code=200))

        job = await poller.run(BACKEND, PAYLOAD)

        assert job.status == PredictionStatus.FAILED
        assert job.error == "CUDA OOM"
        assert len(backend.polls()) == 1

    @pytest.mark.asyncio
    async def test_budget_exhaustion_returns_last_job(self, poller, backend, make_prediction, respond):
        """After exactly 20 polls the last non-terminal job comes back without error."""
        backend.on_create(BACKEND, respond(make_prediction("p1", "starting")))
        backend.on_poll("p1", respond(make_prediction("p1", "processing"), status_code=200))

        job = await poller.run(BACKEND, PAYLOAD)

        assert job.status == PredictionStatus.PROCESSING
        assert len(backend.polls()) == 20

    @pytest.mark.asyncio
    async def test_poll_error_is_raised(self, poller, backend, make_prediction, respond):
        backend.on_create(BACKEND, respond(make_prediction("p1", "starting")))
        backend.on_poll("p1", httpx.Response(503, text="unavailable"))

        with pytest.raises(TransientBackendError, match="prediction poll"):
            await poller.run(BACKEND, PAYLOAD)
        assert len(backend.polls()) == 1

    @pytest.mark.asyncio
    async def test_poll_with_malformed_body(self, poller, backend, make_prediction, respond):
        backend.on_create(BACKEND, respond(make_prediction("p1", "starting")))
        backend.on_poll("p1", httpx.Response(200, content=b"<html>maintenance</html>"))

        with pytest.raises(BackendRequestError, match="Malformed prediction response on prediction poll"):
            await poller.run(BACKEND, PAYLOAD)
        assert len(backend.polls()) == 1

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, poller, backend):
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(RequestCancelledError):
            await poller.run(BACKEND, PAYLOAD, cancel_event=cancel_event)
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_cancel_interrupts_poll_wait(self, http_client, backend, make_prediction, respond):
        """Setting the event wakes the poller well before the interval ends."""
        slow_poller = JobPoller(
            http_client,
            PollSettings(poll_interval=30, max_poll_attempts=20),
            token="r8_test_token",
            base_url=API_BASE,
        )
        backend.on_create(BACKEND, respond(make_prediction("p1", "starting")))
        cancel_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, cancel_event.set)

        with pytest.raises(RequestCancelledError):
            await asyncio.wait_for(
                slow_poller.run(BACKEND, PAYLOAD, cancel_event=cancel_event), timeout=5
            )
        assert backend.polls() == []


class TestFetch:
    """Test single status lookups."""

    @pytest.mark.asyncio
    async def test_fetch(self, poller, backend, make_prediction, respond):
        backend.on_poll(
            "p7",
            respond(
                make_prediction(
                    "p7",
                    "succeeded",
                    output="Done",
                    metrics={"input_token_count": 12, "output_token_count": 3},
                ),
                status_code=200,
            ),
        )

        job = await poller.fetch("p7", backend=BACKEND)

        assert job.succeeded
        assert job.input_tokens == 12
        assert job.output_tokens == 3
        assert str(backend.polls()[0].url) == f"{API_BASE}/predictions/p7"

    @pytest.mark.asyncio
    async def test_fetch_not_found(self, poller, backend):
        with pytest.raises(BackendRequestError) as exc_info:
            await poller.fetch("missing")
        assert exc_info.value.status_code == 404
