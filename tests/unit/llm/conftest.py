"""Shared fixtures for relay tests: a scripted prediction backend and fast settings."""

import json
from collections import defaultdict

import httpx
import pytest

from assistantrelay.llm.circuit_breaker import CircuitBreakerRegistry
from assistantrelay.llm.config import PollSettings, RelayConfig

API_BASE = "https://api.replicate.test/v1"


def prediction(prediction_id, status, output=None, error=None, metrics=None, poll=True):
    """Body of a prediction as the backend reports it."""
    payload = {"id": prediction_id, "status": status, "output": output, "error": error}
    if poll:
        payload["urls"] = {"get": f"{API_BASE}/predictions/{prediction_id}"}
    if metrics is not None:
        payload["metrics"] = metrics
    return payload


class FakeBackend:
    """
    Scripted stand-in for the prediction API.

    Responses are queued per model (create calls) and per prediction id (poll
    calls). Each call consumes the head of its queue; the last entry sticks
    and is replayed for every further call. Entries may be ``httpx.Response``
    objects, exceptions to raise, or callables taking the request.
    """

    def __init__(self):
        self.create_responses = defaultdict(list)
        self.poll_responses = defaultdict(list)
        self.requests = []

    def on_create(self, model, *responses):
        self.create_responses[model].extend(responses)
        return self

    def on_poll(self, prediction_id, *responses):
        self.poll_responses[prediction_id].extend(responses)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST":
            model = path.split("/models/", 1)[1].rsplit("/predictions", 1)[0]
            queue = self.create_responses[model]
        else:
            queue = self.poll_responses[path.rsplit("/", 1)[-1]]

        if not queue:
            return httpx.Response(404, json={"detail": f"Nothing scripted for {path}"})

        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        # Fresh copy so a sticky entry can be served more than once
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    def creates(self, model=None):
        """POST requests, optionally for one model only."""
        return [
            request
            for request in self.requests
            if request.method == "POST"
            and (model is None or f"/models/{model}/predictions" in request.url.path)
        ]

    def polls(self):
        return [request for request in self.requests if request.method == "GET"]

    def create_body(self, index=0):
        return json.loads(self.creates()[index].content)


def ok(payload, status_code=201, headers=None):
    return httpx.Response(status_code, json=payload, headers=headers)


@pytest.fixture
def backend():
    """Fresh scripted backend."""
    return FakeBackend()


@pytest.fixture
def http_client(backend):
    """Async client wired to the scripted backend."""
    return httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    """Circuit registry on the manual clock with default thresholds."""
    return CircuitBreakerRegistry(failure_threshold=3, cooldown_seconds=60.0, clock=clock)


@pytest.fixture
def poll_settings():
    """Production budgets with the interval removed so tests run instantly."""
    return PollSettings(request_timeout=20.0, poll_interval=0, max_poll_attempts=20)


@pytest.fixture
def relay_config(poll_settings):
    """Configuration with a token and the fast poll settings."""
    return RelayConfig(api_token="r8_test_token", api_base=API_BASE, poll=poll_settings)


@pytest.fixture
def make_prediction():
    return prediction


@pytest.fixture
def respond():
    return ok
