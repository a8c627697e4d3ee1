import json
from typing import Callable

import httpx
import pytest

from clawchat.client import GatewayClient
from clawchat.config import GatewayConfig, PollConfig
from clawchat.pending import PendingJobStore
from clawchat.service import ChatService
from clawchat.storage import ConversationStore, LocalStorage


def sse(*payloads: str) -> bytes:
    return "".join(f"data: {p}\n" for p in payloads).encode("utf-8")


def delta_payload(text: str) -> str:
    return json.dumps({"choices": [{"delta": {"content": text}}]})


def stream_response(*chunks: bytes) -> httpx.Response:
    async def body():
        for chunk in chunks:
            yield chunk

    return httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=body()
    )


def completion_response(content: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "chatcmpl-1",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": "stop",
                }
            ],
        },
    )


class FakeGateway:
    """Scripted gateway behind httpx.MockTransport."""

    sse = staticmethod(sse)
    delta = staticmethod(delta_payload)
    stream_response = staticmethod(stream_response)
    completion_response = staticmethod(completion_response)

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.completion: Callable[[httpx.Request], httpx.Response] | httpx.Response = (
            completion_response("hello")
        )
        self.submit: Callable[[httpx.Request], httpx.Response] | httpx.Response | Exception = (
            httpx.Response(200, json={"runId": "run-1"})
        )
        self.polls: list[httpx.Response | Exception] = []
        self.routes: dict[str, httpx.Response | Exception] = {}

    @property
    def poll_count(self) -> int:
        return sum(1 for r in self.requests if r.url.path.startswith("/v1/runs/"))

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/v1/chat/completions":
            return self._reply(self.completion, request)
        if path == "/v1/runs" and request.method == "POST":
            return self._reply(self.submit, request)
        if path.startswith("/v1/runs/"):
            if not self.polls:
                return httpx.Response(200, json={"status": "pending"})
            return self._reply(self.polls.pop(0), request)
        if path in self.routes:
            return self._reply(self.routes[path], request)
        return httpx.Response(404, text="not found")

    def _reply(self, outcome, request: httpx.Request) -> httpx.Response:
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(request)
        return outcome

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        endpoint="http://gateway.test/",
        token="test-token",
        agent_id="main",
        async_enabled=True,
    )


@pytest.fixture
def poll_config() -> PollConfig:
    return PollConfig(initial_delay=1.0, interval=3.0, max_attempts=5)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def client(gateway, gateway_config) -> GatewayClient:
    return GatewayClient(gateway_config, transport=gateway.transport())


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(tmp_path / "data")


@pytest.fixture
def conversation_store(storage) -> ConversationStore:
    return ConversationStore(storage)


@pytest.fixture
def pending_store(storage) -> PendingJobStore:
    return PendingJobStore(storage)


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def service(
    client, conversation_store, pending_store, poll_config, sleeper, events
) -> ChatService:
    return ChatService(
        client,
        conversation_store,
        pending_store,
        poller_config=poll_config,
        on_event=events.append,
        sleep=sleeper,
    )
