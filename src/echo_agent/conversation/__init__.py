"""
Conversation module - bounded, persisted message history.
"""

from .store import COMPRESSION_PLACEHOLDER, SUMMARY_LABEL, ConversationStore
from .types import (
    ConversationState,
    Message,
    Part,
    SummaryMap,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)

__all__ = [
    "COMPRESSION_PLACEHOLDER",
    "SUMMARY_LABEL",
    "ConversationStore",
    "ConversationState",
    "Message",
    "Part",
    "SummaryMap",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
]
