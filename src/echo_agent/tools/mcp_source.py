"""
MCP tool servers reached over a stdio transport.
"""

from contextlib import AsyncExitStack
from typing import Any

import structlog
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import get_default_environment, stdio_client

from ..config import ToolServerConfig
from ..exceptions import ProcessLaunchError
from ..llm.base import ToolManifest
from .base import ToolResult, ToolSource

logger = structlog.get_logger()


class McpToolSource(ToolSource):
    """A connected MCP client session.

    The session and its server process live in the source's own exit stack,
    so :meth:`aclose` must run in the task that called :meth:`connect`.
    """

    def __init__(self, name: str, session: ClientSession, stack: AsyncExitStack):
        self.name = name
        self.session = session
        self._stack = stack

    @classmethod
    async def connect(cls, config: ToolServerConfig) -> "McpToolSource":
        """Launch the server and complete the MCP handshake.

        Raises:
            ProcessLaunchError: if the server cannot be started or initialized
        """
        name = " ".join([config.command, *config.args])
        params = StdioServerParameters(
            command=config.command,
            args=list(config.args),
            env={**get_default_environment(), **config.env} if config.env else None,
            cwd=config.cwd,
        )

        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(params))
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
        except Exception as e:
            await stack.aclose()
            raise ProcessLaunchError(f"Failed to start MCP server '{name}': {e}") from e

        logger.info("Connected to MCP server", server=name)
        return cls(name, session, stack)

    async def list_tools(self) -> list[ToolManifest]:
        result = await self.session.list_tools()
        return [
            ToolManifest(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {"type": "object", "properties": {}}),
            )
            for tool in result.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        result = await self.session.call_tool(name, arguments=arguments)
        text = "\n".join(
            item.text for item in result.content if getattr(item, "type", None) == "text"
        )
        data = result.model_dump(mode="json", exclude_none=True)

        if result.isError:
            return ToolResult(success=False, output=text, data=data, error=text or "tool error")
        return ToolResult(success=True, output=text, data=data)

    async def aclose(self) -> None:
        await self._stack.aclose()
        logger.info("Disconnected from MCP server", server=self.name)
