"""
FastAPI application factory.

Carries agent events as an OpenAI-style ``chat.completion.chunk`` stream of
server-sent events, and manages the lifecycle of the runtime:
- Conversation restore
- Startup processes and MCP tool servers
- Single shutdown of every child on exit
"""

import json
import time
import uuid
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from ..agent import Agent
from ..config import Settings, get_settings
from ..runtime import Runtime

logger = structlog.get_logger()

STREAM_MODEL_NAME = "echo-agent-stream"


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _get_agent(request: Request) -> Agent:
    agent = request.app.state.runtime.agent
    if agent is None:
        raise HTTPException(status_code=503, detail="Agent not initialized")
    return agent


async def stream_turn(agent: Agent, utterance: str) -> AsyncGenerator[str, None]:
    """Run one turn and frame its events as chat completion chunks."""
    meta = {
        "id": f"chatcmpl-{uuid.uuid4()}",
        "created": int(time.time()),
        "model": STREAM_MODEL_NAME,
        "object": "chat.completion.chunk",
    }

    yield _sse({**meta, "choices": [{"delta": {"role": "assistant"}, "index": 0}]})

    async with aclosing(agent.submit(utterance)) as events:
        async for event in events:
            if not event.text:
                continue
            yield _sse({
                **meta,
                "choices": [{"delta": {"content": event.text, "type": event.kind}, "index": 0}],
            })

    yield _sse({**meta, "choices": [{"delta": {}, "finish_reason": "stop", "index": 0}]})
    yield "data: [DONE]\n\n"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    runtime: Runtime = app.state.runtime

    await runtime.start()
    logger.info("Application started")

    try:
        yield
    finally:
        await runtime.shutdown()
        logger.info("Application shutdown complete")


def create_app(settings: Settings | None = None, runtime: Runtime | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="echo-agent",
        description="Streaming voice-assistant agent with MCP tool support",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime or Runtime(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/")
    async def submit(request: Request):
        """Submit an utterance (raw request body) and stream the turn."""
        agent = _get_agent(request)
        utterance = (await request.body()).decode("utf-8", errors="replace").strip()
        if not utterance:
            raise HTTPException(status_code=400, detail="Empty utterance")

        logger.info("Received message", length=len(utterance))
        return StreamingResponse(
            stream_turn(agent, utterance),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @app.post("/cancel")
    async def cancel(request: Request):
        """Cancel the running turn."""
        agent = _get_agent(request)
        return {"cancelled": agent.cancel()}

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint."""
        runtime = request.app.state.runtime
        agent = runtime.agent
        return {
            "status": "healthy" if agent is not None else "starting",
            "state": agent.state.value if agent is not None else None,
            "busy": agent.busy if agent is not None else False,
            "tools": runtime.tool_registry.list_tools(),
        }

    return app
