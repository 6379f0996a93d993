"""
Tests for the HTTP streaming surface.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from echo_agent.agent import AgentEvent, TurnState
from echo_agent.api import create_app
from echo_agent.api.app import stream_turn
from echo_agent.config import Settings


class FakeAgent:
    state = TurnState.IDLE
    busy = False

    def __init__(self):
        self.utterances = []

    async def submit(self, utterance, token=None):
        self.utterances.append(utterance)
        yield AgentEvent(kind="text", text="こんにちは、")
        yield AgentEvent(kind="tool_start", text="clock")
        yield AgentEvent(kind="tool_end", text="clock")
        yield AgentEvent(kind="done")

    def cancel(self):
        return False


class ClosingAgent(FakeAgent):
    """Records whether its event stream was closed."""

    closed = False

    async def submit(self, utterance, token=None):
        try:
            async for event in super().submit(utterance, token):
                yield event
        finally:
            self.closed = True


def make_runtime(agent=None):
    runtime = MagicMock()
    runtime.agent = agent
    runtime.start = AsyncMock(return_value=agent)
    runtime.shutdown = AsyncMock()
    runtime.tool_registry.list_tools.return_value = ["clock"]
    return runtime


def sse_payloads(body: str) -> list:
    return [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]


def test_submit_streams_chat_completion_chunks():
    """Events are framed as chat.completion.chunk SSE lines ending in [DONE]."""
    agent = FakeAgent()
    runtime = make_runtime(agent)
    app = create_app(settings=Settings(_env_file=None), runtime=runtime)

    with TestClient(app) as client:
        response = client.post("/", content="今何時？".encode("utf-8"))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert agent.utterances == ["今何時？"]

    payloads = sse_payloads(response.text)
    assert payloads[-1] == "[DONE]"
    chunks = [json.loads(p) for p in payloads[:-1]]
    assert all(c["object"] == "chat.completion.chunk" for c in chunks)
    assert chunks[0]["choices"][0]["delta"] == {"role": "assistant"}
    assert [c["choices"][0]["delta"] for c in chunks[1:-1]] == [
        {"content": "こんにちは、", "type": "text"},
        {"content": "clock", "type": "tool_start"},
        {"content": "clock", "type": "tool_end"},
    ]
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"

    runtime.start.assert_awaited_once()
    runtime.shutdown.assert_awaited_once()


def test_submit_rejects_empty_body():
    """An empty utterance is a client error."""
    app = create_app(settings=Settings(_env_file=None), runtime=make_runtime(FakeAgent()))

    with TestClient(app) as client:
        response = client.post("/", content=b"   ")

    assert response.status_code == 400


def test_submit_before_initialization():
    """Requests before the agent exists get 503."""
    app = create_app(settings=Settings(_env_file=None), runtime=make_runtime(None))

    with TestClient(app) as client:
        response = client.post("/", content=b"hello")

    assert response.status_code == 503


def test_cancel_and_health():
    """Test the cancel and health endpoints."""
    app = create_app(settings=Settings(_env_file=None), runtime=make_runtime(FakeAgent()))

    with TestClient(app) as client:
        cancel = client.post("/cancel")
        health = client.get("/health")

    assert cancel.json() == {"cancelled": False}
    assert health.json() == {
        "status": "healthy",
        "state": "idle",
        "busy": False,
        "tools": ["clock"],
    }


@pytest.mark.asyncio
async def test_stream_turn_closes_agent_stream_on_disconnect():
    """A client going away closes the agent's event stream straight away."""
    agent = ClosingAgent()

    frames = stream_turn(agent, "hi")
    assert '"role": "assistant"' in await frames.__anext__()
    assert "こんにちは" in await frames.__anext__()
    assert agent.closed is False

    await frames.aclose()

    assert agent.closed is True
