"""
Tool registry aggregating every tool source.
"""

from typing import Any

import structlog

from ..exceptions import ToolNotFound
from ..llm.base import ToolManifest
from .base import ToolResult, ToolSource

logger = structlog.get_logger()


class ToolRegistry:
    """Aggregates manifests from many sources and routes calls by name."""

    def __init__(self, sources: list[ToolSource] | None = None, ignore_list: list[str] | None = None):
        self._sources: list[ToolSource] = list(sources or [])
        self.ignore_list = set(ignore_list or [])
        self._index: dict[str, ToolSource] = {}
        self._manifests: list[ToolManifest] = []

    def add_source(self, source: ToolSource) -> None:
        """Register a source; call :meth:`list_all` again to expose its tools."""
        self._sources.append(source)
        logger.info("Tool source registered", source=source.name)

    @property
    def sources(self) -> list[ToolSource]:
        return list(self._sources)

    @property
    def manifests(self) -> list[ToolManifest]:
        """Manifests exposed to the model, as of the last :meth:`list_all`."""
        return list(self._manifests)

    def list_tools(self) -> list[str]:
        """List exposed tool names."""
        return [m.name for m in self._manifests]

    async def list_all(self) -> list[ToolManifest]:
        """Query every source and rebuild the name index.

        A failing source is logged and skipped. Ignored names are filtered
        from the returned manifests but stay resolvable.
        """
        index: dict[str, ToolSource] = {}
        manifests: list[ToolManifest] = []

        for source in self._sources:
            try:
                tools = await source.list_tools()
            except Exception as e:
                logger.error("Failed to list tools", source=source.name, error=str(e))
                continue

            for manifest in tools:
                if manifest.name in index:
                    logger.warning(
                        "Duplicate tool name, keeping first source",
                        tool_name=manifest.name,
                        source=source.name,
                        owner=index[manifest.name].name,
                    )
                    continue
                index[manifest.name] = source
                manifests.append(manifest)

        self._index = index
        self._manifests = [m for m in manifests if m.name not in self.ignore_list]

        logger.info(
            "Tools aggregated",
            total=len(manifests),
            exposed=len(self._manifests),
            ignored=sorted(self.ignore_list & index.keys()),
        )
        return self.manifests

    def resolve(self, name: str) -> ToolSource:
        """Get the source that owns a tool.

        Raises:
            ToolNotFound: if no source claims the name
        """
        source = self._index.get(name)
        if source is None:
            raise ToolNotFound(name)
        return source

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name; failures come back as a failed result."""
        try:
            source = self.resolve(name)
        except ToolNotFound as e:
            logger.warning("Tool not found", tool_name=name)
            return ToolResult(success=False, error=str(e))

        try:
            logger.info("Executing tool", tool_name=name, source=source.name, arguments=arguments)
            result = await source.call_tool(name, arguments)
            logger.info("Tool executed", tool_name=name, success=result.success)
            return result
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                output="",
                error=str(e),
            )
