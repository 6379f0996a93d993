"""
Base classes for tools and tool sources.

A tool source is anything that can list tool manifests and execute calls by
name. Two variants exist: :class:`LocalToolSource` (in-process handlers) and
``McpToolSource`` (an MCP server over stdio).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

from ..exceptions import ToolInvocationError
from ..llm.base import ToolManifest


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None

    def to_result_payload(self) -> Any:
        """Value stored in the conversation's tool-result part."""
        if self.data is not None:
            return self.data
        return self.output if self.success else f"Error: {self.error}"


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, ToolResult]]

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_manifest(self) -> ToolManifest:
        return ToolManifest(
            name=self.name,
            description=self.description,
            input_schema=self.get_parameters_schema(),
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(**kwargs)


class ToolSource(ABC):
    """Capability shared by every tool source."""

    name: str = "tools"

    @abstractmethod
    async def list_tools(self) -> list[ToolManifest]:
        """Get the manifests of every tool this source serves."""
        pass

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name."""
        pass

    async def aclose(self) -> None:
        """Release any resources held by the source."""
        return None


class LocalToolSource(ToolSource):
    """In-process tool client; registering a name twice replaces the tool."""

    def __init__(self, name: str, tools: list[Tool] | None = None):
        self.name = name
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    async def list_tools(self) -> list[ToolManifest]:
        return [tool.to_manifest() for tool in self._tools.values()]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolInvocationError(name, f"not registered in {self.name}")
        return await tool.execute(**(arguments or {}))
