"""
Built-in in-process tool clients.

Clients are selected by name from configuration through ``TOOL_CLIENTS``,
a startup-time table of constructors.
"""

from typing import Callable

import structlog

from ..conversation import ConversationStore
from ..conversation.store import MAX_NOTES
from .base import LocalToolSource, Tool, ToolParameter, ToolResult

logger = structlog.get_logger()


def create_short_memory_client(store: ConversationStore) -> LocalToolSource:
    """Tools that manage the store's short-term notes."""

    async def add_tool(text: str) -> ToolResult:
        try:
            added = store.add_note(text)
        except ValueError as e:
            return ToolResult(success=False, error=str(e))
        return ToolResult(success=True, output=f"ADDED ({len(store.notes)}/{MAX_NOTES}): {added}")

    async def remove_tool(index: int) -> ToolResult:
        try:
            removed = store.remove_note(index)
        except IndexError as e:
            return ToolResult(success=False, error=str(e))
        return ToolResult(success=True, output=f"REMOVED ({index}): {removed}")

    async def get_all_tool() -> ToolResult:
        lines = [f"{i}: {note}" for i, note in enumerate(store.notes)]
        return ToolResult(success=True, output="\n".join(lines))

    return LocalToolSource("short_memory", [
        Tool(
            name="shortMemory_add",
            description=(
                f"Add a sentence to short-term memory (max {MAX_NOTES} items). "
                "Only use this when the user explicitly asks."
            ),
            parameters=[
                ToolParameter(
                    name="text",
                    param_type="string",
                    description="The sentence to remember",
                ),
            ],
            handler=add_tool,
        ),
        Tool(
            name="shortMemory_remove",
            description="Remove an entry from short-term memory by 0-based index.",
            parameters=[
                ToolParameter(
                    name="index",
                    param_type="integer",
                    description="Index of the entry to remove (0-based)",
                ),
            ],
            handler=remove_tool,
        ),
        Tool(
            name="shortMemory_getAll",
            description="Return every short-term memory entry, one per line.",
            parameters=[],
            handler=get_all_tool,
        ),
    ])


def create_new_chat_client(store: ConversationStore) -> LocalToolSource:
    """A tool that resets the conversation history with user consent."""

    async def reset_tool(user_authorized: bool) -> ToolResult:
        if user_authorized is not True:
            return ToolResult(success=False, error="Operation not authorized by user.")
        store.clear()
        return ToolResult(success=True, output="Chat history has been reset. New conversation started.")

    return LocalToolSource("new_chat", [
        Tool(
            name="newChat_reset",
            description=(
                "Clear the whole chat history and start a new chat. "
                "Requires user_authorized: true."
            ),
            parameters=[
                ToolParameter(
                    name="user_authorized",
                    param_type="boolean",
                    description="Whether the user allowed this operation (must be true)",
                ),
            ],
            handler=reset_tool,
        ),
    ])


TOOL_CLIENTS: dict[str, Callable[[ConversationStore], LocalToolSource]] = {
    "short_memory": create_short_memory_client,
    "new_chat": create_new_chat_client,
}


def load_tool_clients(names: list[str], store: ConversationStore) -> list[LocalToolSource]:
    """Build the configured clients; unknown names are logged and skipped."""
    clients = []
    for name in names:
        factory = TOOL_CLIENTS.get(name)
        if factory is None:
            logger.error("Unknown tool client", client=name, available=sorted(TOOL_CLIENTS))
            continue
        clients.append(factory(store))
        logger.info("Loaded tool client", client=name)
    return clients
