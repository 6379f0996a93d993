"""
Tests for agent module.
"""

import asyncio
import json

import pytest

from echo_agent.agent import Agent, CancellationToken, SentenceChunker, TurnState
from echo_agent.config import Settings
from echo_agent.conversation import ConversationStore
from echo_agent.llm import BaseLLM, ToolCall
from echo_agent.tools import LocalToolSource, Tool, ToolParameter, ToolRegistry, ToolResult


class ScriptedLLM(BaseLLM):
    """Replays one scripted step per call; the last step repeats."""

    def __init__(self, steps):
        super().__init__(api_key="test", model="scripted")
        self.steps = steps
        self.calls = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def stream_completion(self, messages, tools=None, system_prompt=None, temperature=None):
        self.calls.append(list(messages))
        step = self.steps[min(len(self.calls), len(self.steps)) - 1]
        for item in step:
            if isinstance(item, Exception):
                raise item
            if isinstance(item, (int, float)):
                await asyncio.sleep(item)
                continue
            yield item


def echo_source(on_call=None) -> LocalToolSource:
    async def echo(text: str) -> ToolResult:
        if on_call is not None:
            on_call()
        return ToolResult(success=True, output=text)

    return LocalToolSource("local", [
        Tool(
            name="echo",
            description="Echo the input back",
            parameters=[ToolParameter(name="text", param_type="string", description="Text to echo")],
            handler=echo,
        ),
    ])


async def make_agent(tmp_path, llm, sources=None, **overrides) -> Agent:
    settings = Settings(_env_file=None, data_dir=tmp_path, **overrides)
    store = ConversationStore(settings.snapshot_path, message_limit=settings.message_limit)
    registry = ToolRegistry(sources or [])
    await registry.list_all()
    return Agent(llm=llm, tool_registry=registry, store=store, settings=settings, system_prompt="")


async def collect(agent: Agent, utterance: str, token=None) -> list:
    return [event async for event in agent.submit(utterance, token)]


def texts(events) -> list[str]:
    return [e.text for e in events if e.kind == "text"]


# ---------------------------------------------------------------------- #
# SentenceChunker
# ---------------------------------------------------------------------- #


def test_chunker_holds_short_text_until_flush():
    """Text shorter than the minimum stays buffered."""
    chunker = SentenceChunker()

    assert chunker.feed("今日は") == []
    assert chunker.feed("晴れです。") == []
    assert chunker.flush() == "今日は晴れです。"


def test_chunker_ignores_delimiters_before_minimum():
    """Only a delimiter at or after index ten ends a chunk."""
    chunker = SentenceChunker()

    assert chunker.feed("あいう、えおかきくけこさしす。たち") == ["あいう、えおかきくけこさしす。"]
    assert chunker.buffer == "たち"


def test_chunker_boundary_at_minimum_index():
    """A delimiter exactly at index ten qualifies, one at nine does not."""
    chunker = SentenceChunker()
    assert chunker.feed("0123456789、rest") == ["0123456789、"]

    chunker = SentenceChunker()
    assert chunker.feed("012345678、abc") == []


def test_chunker_multiple_chunks_in_one_fragment():
    """A long fragment can release several chunks."""
    chunker = SentenceChunker()

    chunks = chunker.feed("0123456789！" + "abcdefghij。" + "tail")

    assert chunks == ["0123456789！", "abcdefghij。"]
    assert chunker.flush() == "tail"


def test_chunker_flush_drops_whitespace():
    """A whitespace-only remainder is not emitted."""
    chunker = SentenceChunker()
    chunker.feed("  \n")

    assert chunker.flush() is None
    assert chunker.flush() is None


# ---------------------------------------------------------------------- #
# Agent turns
# ---------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_agent_streams_text_in_chunks(tmp_path):
    """Text events concatenate to the full reply and the turn is persisted."""
    reply = ["今日は", "晴れです。", "明日も晴れるでしょう、たぶん。"]
    agent = await make_agent(tmp_path, ScriptedLLM([reply]))

    events = await collect(agent, "天気は？")

    assert texts(events) == ["今日は晴れです。明日も晴れるでしょう、", "たぶん。"]
    assert "".join(texts(events)) == "".join(reply)
    assert events[-1].kind == "done"
    assert agent.state == TurnState.COMPLETED
    assert [m.role for m in agent.store.messages] == ["user", "assistant"]

    snapshot = json.loads((tmp_path / "messages.json").read_text(encoding="utf-8"))
    assert snapshot["messages"][0] == {"role": "user", "content": "天気は？"}


@pytest.mark.asyncio
async def test_agent_feeds_tool_results_back(tmp_path):
    """A tool call is executed and its result reaches the next step."""
    llm = ScriptedLLM([
        [ToolCall(id="call_1", name="echo", arguments={"text": "pong"})],
        ["Done."],
    ])
    agent = await make_agent(tmp_path, llm, [echo_source()])

    events = await collect(agent, "ping")

    assert [e.kind for e in events] == ["tool_start", "tool_end", "text", "done"]
    assert len(llm.calls) == 2
    tool_message = llm.calls[1][-1]
    assert tool_message.role == "tool"
    assert tool_message.tool_results[0].result == "pong"
    assert [m.role for m in agent.store.messages] == ["user", "assistant", "tool", "assistant"]


@pytest.mark.asyncio
async def test_agent_stops_at_max_steps(tmp_path):
    """A model that always wants another tool stops after max_steps steps."""

    class LoopingLLM(ScriptedLLM):
        async def stream_completion(self, messages, tools=None, system_prompt=None, temperature=None):
            self.calls.append(list(messages))
            yield ToolCall(id=f"call_{len(self.calls)}", name="echo", arguments={"text": "again"})

    llm = LoopingLLM([])
    agent = await make_agent(tmp_path, llm, [echo_source()], max_steps=2)

    events = await collect(agent, "loop forever")

    assert len(llm.calls) == 2
    assert [e.kind for e in events].count("tool_end") == 2
    assert not any(e.kind == "error" for e in events)
    assert events[-1].kind == "done"
    assert agent.state == TurnState.COMPLETED
    assert [m.role for m in agent.store.messages] == ["user", "assistant", "tool", "assistant", "tool"]


@pytest.mark.asyncio
async def test_agent_reports_provider_error(tmp_path):
    """A failing provider yields one error event and a system note in history."""
    agent = await make_agent(tmp_path, ScriptedLLM([[RuntimeError("boom")]]))

    events = await collect(agent, "hello")

    assert [e.kind for e in events] == ["error", "done"]
    assert events[0].text == agent.settings.error_message
    assert agent.state == TurnState.FAILED
    assert agent.store.messages[-1].role == "system"
    assert agent.store.messages[-1].text == agent.settings.error_message
    assert (tmp_path / "messages.json").exists()


@pytest.mark.asyncio
async def test_agent_cancel_keeps_partial_text(tmp_path):
    """Cancelling mid-stream stops text events and keeps what arrived."""
    llm = ScriptedLLM([["0123456789、", "もっと", "続き。", ToolCall(id="c", name="echo", arguments={})]])
    agent = await make_agent(tmp_path, llm, [echo_source()])

    events = []
    async for event in agent.submit("話して"):
        events.append(event)
        if event.kind == "text":
            assert agent.cancel() is True

    assert texts(events) == ["0123456789、"]
    assert events[-1].kind == "done"
    assert agent.state == TurnState.CANCELLED
    last = agent.store.messages[-1]
    assert last.role == "assistant"
    assert last.text.startswith("0123456789、")
    assert last.tool_calls == []
    assert agent.cancel() is False


@pytest.mark.asyncio
async def test_agent_cancel_during_tools_drops_unanswered_calls(tmp_path):
    """Calls that never ran are removed so every call keeps its result."""
    token = CancellationToken()
    llm = ScriptedLLM([[
        ToolCall(id="a", name="echo", arguments={"text": "first"}),
        ToolCall(id="b", name="echo", arguments={"text": "second"}),
    ]])
    agent = await make_agent(tmp_path, llm, [echo_source(on_call=token.cancel)])

    events = await collect(agent, "run both", token)

    assert [e.kind for e in events] == ["tool_start", "tool_end", "done"]
    assert agent.state == TurnState.CANCELLED
    assistant, tool = agent.store.messages[1:]
    assert [c.tool_call_id for c in assistant.tool_calls] == ["a"]
    assert [r.tool_call_id for r in tool.tool_results] == ["a"]


@pytest.mark.asyncio
async def test_agent_timeout_cancels_turn(tmp_path):
    """The wall-clock budget cancels a slow turn without an error."""
    llm = ScriptedLLM([["0123456789、", 0.3, "late"]])
    agent = await make_agent(tmp_path, llm, timeout_seconds=0.05)

    token = CancellationToken()
    events = await collect(agent, "slow", token)

    assert texts(events) == ["0123456789、"]
    assert not any(e.kind == "error" for e in events)
    assert token.reason == "timeout"
    assert agent.state == TurnState.CANCELLED


@pytest.mark.asyncio
async def test_agent_timeout_bounds_stalled_provider(tmp_path):
    """A provider that stops sending cannot hold the turn past its budget."""
    llm = ScriptedLLM([["0123456789、", 3.0, "late"]])
    agent = await make_agent(tmp_path, llm, timeout_seconds=0.1)

    loop = asyncio.get_running_loop()
    token = CancellationToken()
    started = loop.time()
    events = await collect(agent, "slow", token)

    assert loop.time() - started < 1.0
    assert texts(events) == ["0123456789、"]
    assert events[-1].kind == "done"
    assert token.reason == "timeout"
    assert agent.state == TurnState.CANCELLED
    last = agent.store.messages[-1]
    assert last.role == "assistant"
    assert last.text == "0123456789、"
    assert (tmp_path / "messages.json").exists()


@pytest.mark.asyncio
async def test_agent_closing_stream_keeps_partial_turn(tmp_path):
    """Abandoning the event stream cancels the turn and persists what arrived."""
    llm = ScriptedLLM([["0123456789、", 0.05, "続きの文章です。"]])
    agent = await make_agent(tmp_path, llm)

    events = agent.submit("hello")
    first = await events.__anext__()
    await events.aclose()

    assert first.text == "0123456789、"
    assert agent.state == TurnState.CANCELLED
    assert agent.busy is False
    assert [m.role for m in agent.store.messages] == ["user", "assistant"]
    assert agent.store.messages[-1].text == "0123456789、"

    saved = json.loads((tmp_path / "messages.json").read_text(encoding="utf-8"))
    assert [m["role"] for m in saved["messages"]] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_agent_closing_stream_before_tool_result(tmp_path):
    """A call abandoned before it ran leaves no unanswered call behind."""
    llm = ScriptedLLM([[ToolCall(id="a", name="echo", arguments={"text": "x"})]])
    agent = await make_agent(tmp_path, llm, [echo_source()])

    events = agent.submit("run it")
    first = await events.__anext__()
    await events.aclose()

    assert first.kind == "tool_start"
    assert agent.state == TurnState.CANCELLED
    assert [m.role for m in agent.store.messages] == ["user"]
    assert (tmp_path / "messages.json").exists()

    # The next turn runs normally
    llm.steps = [["了解しました。"]]
    events = await collect(agent, "again")
    assert [e.kind for e in events] == ["text", "done"]


@pytest.mark.asyncio
async def test_agent_serializes_turns(tmp_path):
    """A second submission waits for the first turn to land in history."""
    llm = ScriptedLLM([[0.05, "reply"]])
    agent = await make_agent(tmp_path, llm)

    await asyncio.gather(collect(agent, "first"), collect(agent, "second"))

    assert [m.text for m in agent.store.messages] == ["first", "reply", "second", "reply"]
    second_context = [m.text for m in llm.calls[1]]
    assert second_context[-3:] == ["first", "reply", "second"]
    assert agent.busy is False
