"""
Tools module - tool sources and the registry that routes calls to them.
"""

from .base import LocalToolSource, Tool, ToolParameter, ToolResult, ToolSource
from .clients import TOOL_CLIENTS, load_tool_clients
from .mcp_source import McpToolSource
from .registry import ToolRegistry

__all__ = [
    "LocalToolSource",
    "Tool",
    "ToolParameter",
    "ToolResult",
    "ToolSource",
    "TOOL_CLIENTS",
    "load_tool_clients",
    "McpToolSource",
    "ToolRegistry",
]
