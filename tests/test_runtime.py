"""
Tests for runtime wiring.
"""

import json

import pytest

from echo_agent.config import Settings
from echo_agent.llm import BaseLLM
from echo_agent.process import ProcessState
from echo_agent.runtime import Runtime


class ReplyLLM(BaseLLM):
    def __init__(self):
        super().__init__(api_key="test", model="reply")

    @property
    def provider_name(self) -> str:
        return "reply"

    async def stream_completion(self, messages, tools=None, system_prompt=None, temperature=None):
        yield "了解しました。"


@pytest.mark.asyncio
async def test_runtime_start_and_shutdown(tmp_path):
    """Startup restores history, launches children and loads tool clients."""
    (tmp_path / "messages.json").write_text(json.dumps({
        "messages": [{"role": "user", "content": "earlier"}],
        "short_term_notes": ["a note"],
        "summary": None,
    }), encoding="utf-8")

    settings = Settings(
        _env_file=None,
        data_dir=tmp_path,
        tool_clients=["short_memory", "new_chat"],
        ignore_list=["newChat_reset"],
        startup_processes=["sleep 30"],
        shutdown_grace_seconds=1.0,
    )
    runtime = Runtime(settings, llm=ReplyLLM())

    agent = await runtime.start()
    handles = runtime.supervisor.handles

    assert [m.text for m in runtime.store.messages] == ["earlier"]
    assert runtime.store.notes == ["a note"]
    assert len(handles) == 1
    assert "newChat_reset" not in runtime.tool_registry.list_tools()
    assert "shortMemory_add" in runtime.tool_registry.list_tools()

    events = [event async for event in agent.submit("よろしく")]
    assert [e.kind for e in events] == ["text", "done"]

    await runtime.shutdown()
    await runtime.shutdown()

    assert handles[0].state == ProcessState.EXITED
    assert runtime.supervisor.is_shut_down is True
