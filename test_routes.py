#!/usr/bin/env python3
"""
End-to-end tests of the HTTP surface with FastAPI's TestClient.
"""

import asyncio
import json
import time

import pytest
from fastapi.testclient import TestClient

from chat_relay.history.transcript_store import TranscriptStore
from chat_relay.llm.exceptions import AuthenticationError, RateLimitError
from chat_relay.llm.mock import ScriptedUpstream
from chat_relay.llm.providers import ProviderRegistry
from chat_relay.llm.streaming.framing import parse_sse_events
from chat_relay.llm.streaming.models import DoneChunk, ErrorChunk, TextChunk
from chat_relay.main import create_app
from chat_relay.relay.models import RelayOptions

CHAT = {
    "model": "echo",
    "messages": [{"role": "user", "content": "hello relay world"}],
}


class StaticRegistry:
    """Serves the same scripted upstream to every request."""

    active = "mock"

    def __init__(self, script, **upstream_options):
        self.script = script
        self.upstream_options = upstream_options
        self.opened = []

    def with_default_model(self, request):
        return request

    def open_stream(self, request):
        upstream = ScriptedUpstream(self.script, **self.upstream_options)
        self.opened.append(upstream)
        return upstream

    def describe(self):
        return []

    async def aclose(self):
        pass


def _app(tmp_path, registry=None, persist=True):
    return create_app(
        registry=registry or ProviderRegistry({}, "mock"),
        transcripts=TranscriptStore(
            str(tmp_path / "transcripts.db"), enabled=persist
        ),
        relay_options=RelayOptions(min_delay_ms=0),
    )


def _client(tmp_path, registry=None) -> TestClient:
    return TestClient(_app(tmp_path, registry))


class ASGIConnection:
    """One raw ASGI request whose client can hang up at any moment."""

    def __init__(self, body: dict, hang_up_after_first_event: bool = False):
        self.body = json.dumps(body).encode()
        self.hang_up_after_first_event = hang_up_after_first_event
        self.disconnected = asyncio.Event()
        self.sent = []
        self._body_sent = False

    def scope(self) -> dict:
        return {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "POST",
            "scheme": "http",
            "path": "/api/chat",
            "raw_path": b"/api/chat",
            "root_path": "",
            "query_string": b"",
            "headers": [(b"content-type", b"application/json")],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
        }

    async def receive(self) -> dict:
        if not self._body_sent:
            self._body_sent = True
            return {"type": "http.request", "body": self.body, "more_body": False}
        await self.disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: dict) -> None:
        self.sent.append(message)
        if self.hang_up_after_first_event and b"data:" in message.get("body", b""):
            self.disconnected.set()

    async def run(self, app, timeout: float = 1.0) -> None:
        await asyncio.wait_for(app(self.scope(), self.receive, self.send), timeout)

    @property
    def status(self) -> int:
        starts = [m for m in self.sent if m["type"] == "http.response.start"]
        return starts[0]["status"]

    @property
    def body_parts(self) -> list[bytes]:
        return [
            m["body"]
            for m in self.sent
            if m["type"] == "http.response.body" and m.get("body")
        ]


@pytest.fixture
def client(tmp_path):
    with _client(tmp_path) as client:
        yield client


class TestChatStream:

    def test_streams_mock_completion(self, client):
        response = client.post("/api/chat", json=CHAT)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = parse_sse_events(response.content)
        content = "".join(e["choices"][0]["delta"]["content"] for e in events)
        assert content == "hello relay world"
        assert events[-1]["choices"][0]["finish_reason"] == "stop"
        assert events[-1]["usage"]["completion_tokens"] == 3
        assert len({e["id"] for e in events}) == 1

    def test_missing_model_uses_provider_default(self, client):
        response = client.post("/api/chat", json={"messages": CHAT["messages"]})

        assert response.status_code == 200
        events = parse_sse_events(response.content)
        assert {e["model"] for e in events} == {"mock-echo"}

    def test_transcript_and_replay(self, client):
        response = client.post("/api/chat", json=CHAT)
        completion_id = parse_sse_events(response.content)[0]["id"]

        transcript = client.get(f"/api/chat/{completion_id}")
        assert transcript.status_code == 200
        assert transcript.json()["state"] == "ended"
        assert transcript.json()["content"] == "hello relay world"

        replayed = client.get(f"/api/chat/{completion_id}/replay")
        assert replayed.status_code == 200
        assert replayed.content == response.content

    def test_unknown_transcript(self, client):
        for path in ("/api/chat/gen-nope", "/api/chat/gen-nope/replay"):
            response = client.get(path)
            assert response.status_code == 404
            assert response.json()["error"]["code"] == "not_found"

    def test_invalid_body(self, client):
        response = client.post("/api/chat", json={"model": "echo", "messages": []})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"

    def test_unconfigured_provider(self, client):
        response = client.post("/api/chat", json={**CHAT, "provider": "deepinfra"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"


class TestErrorPaths:

    def test_preflight_error_is_plain_http_error(self, tmp_path):
        registry = StaticRegistry([AuthenticationError("Invalid API key")])

        with _client(tmp_path, registry) as client:
            response = client.post("/api/chat", json=CHAT)

        assert response.status_code == 401
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {
            "error": {"code": "unauthorized", "message": "Invalid API key"}
        }
        assert registry.opened[0].cancelled

    def test_preflight_error_chunk(self, tmp_path):
        registry = StaticRegistry([ErrorChunk("insufficient_credits", "Top up")])

        with _client(tmp_path, registry) as client:
            response = client.post("/api/chat", json=CHAT)

        assert response.status_code == 402
        assert response.json()["error"]["code"] == "insufficient_credits"

    def test_mid_stream_error_is_single_event(self, tmp_path):
        registry = StaticRegistry([TextChunk("Hello"), RateLimitError("slow down")])

        with _client(tmp_path, registry) as client:
            response = client.post("/api/chat", json=CHAT)

        assert response.status_code == 200
        events = parse_sse_events(response.content)
        assert len(events) == 2
        assert events[0]["choices"][0]["delta"]["content"] == "Hello"
        assert events[1]["choices"][0]["finish_reason"] == "error"
        assert events[1]["error"]["code"] == "rate_limited"


class TestClientDisconnect:

    @pytest.mark.asyncio
    async def test_disconnect_before_first_chunk(self, tmp_path):
        registry = StaticRegistry([TextChunk("late"), DoneChunk()], first_delay=2.0)
        app = _app(tmp_path, registry, persist=False)
        connection = ASGIConnection(CHAT)
        asyncio.get_running_loop().call_later(0.05, connection.disconnected.set)

        start = time.monotonic()
        await connection.run(app)
        elapsed = time.monotonic() - start

        upstream = registry.opened[0]
        assert upstream.cancelled
        assert upstream.yielded == 0
        assert connection.status == 499
        assert json.loads(b"".join(connection.body_parts))["error"]["code"] == (
            "client_closed_request"
        )
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_disconnect_mid_stream(self, tmp_path):
        registry = StaticRegistry(
            [TextChunk("a"), TextChunk("b"), TextChunk("c"), DoneChunk()], gap=0.3
        )
        app = _app(tmp_path, registry, persist=False)
        connection = ASGIConnection(CHAT, hang_up_after_first_event=True)

        start = time.monotonic()
        await connection.run(app)
        elapsed = time.monotonic() - start

        upstream = registry.opened[0]
        assert connection.status == 200
        assert upstream.cancelled
        assert upstream.yielded == 1
        events = parse_sse_events(b"".join(connection.body_parts))
        assert [e["choices"][0]["delta"]["content"] for e in events] == ["a"]
        assert elapsed < 0.3


class TestInfoRoutes:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_providers(self, client):
        response = client.get("/api/providers")
        assert response.status_code == 200
        assert response.json() == []
