"""
Tests for MCP tool servers over stdio.
"""

import sys

import pytest

from echo_agent.config import ToolServerConfig
from echo_agent.process import ProcessSupervisor
from echo_agent.tools import ToolRegistry

ARITHMETIC_SERVER = '''
from mcp.server.fastmcp import FastMCP

mcp = FastMCP("arithmetic")


@mcp.tool()
def add(a: int, b: int) -> int:
    """Add two integers."""
    return a + b


@mcp.tool()
def fail(reason: str) -> str:
    """Always fails."""
    raise ValueError(reason)


if __name__ == "__main__":
    mcp.run()
'''


@pytest.fixture
def server_config(tmp_path) -> ToolServerConfig:
    script = tmp_path / "arithmetic_server.py"
    script.write_text(ARITHMETIC_SERVER, encoding="utf-8")
    return ToolServerConfig(command=sys.executable, args=[str(script)], cwd=str(tmp_path))


@pytest.mark.asyncio
async def test_mcp_server_lists_and_calls_tools(server_config):
    """A stdio server is connected, its tools listed and called, then shut down."""
    supervisor = ProcessSupervisor(shutdown_timeout=10.0)
    source = await supervisor.connect_tool_server(server_config)
    assert source is not None

    try:
        registry = ToolRegistry([source])
        manifests = await registry.list_all()

        assert {m.name for m in manifests} == {"add", "fail"}
        add = next(m for m in manifests if m.name == "add")
        assert add.description == "Add two integers."
        assert set(add.input_schema["properties"]) == {"a", "b"}
        assert registry.resolve("add") is source

        result = await registry.invoke("add", {"a": 2, "b": 3})
        assert result.success is True
        assert result.output == "5"
        assert result.data["content"][0]["text"] == "5"

        failed = await registry.invoke("fail", {"reason": "nope"})
        assert failed.success is False
        assert "nope" in failed.error
    finally:
        await supervisor.shutdown()

    assert supervisor.tool_sources == []


@pytest.mark.asyncio
async def test_mcp_server_with_missing_command_is_skipped(tmp_path):
    """A server command that does not exist is excluded without raising."""
    supervisor = ProcessSupervisor()
    config = ToolServerConfig(command=str(tmp_path / "no-such-server"))

    source = await supervisor.connect_tool_server(config)

    assert source is None
    assert supervisor.tool_sources == []
    await supervisor.shutdown()
