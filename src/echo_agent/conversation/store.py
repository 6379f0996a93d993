"""
Bounded conversation history with a rolling tool-call summary.

The store keeps at most ``message_limit`` resident messages. Evicted tool
calls are folded into a summary map (tool name -> last arguments) so the
model still knows which tools it used earlier, and a tool call is always
evicted together with its result.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Union

import structlog

from ..exceptions import PersistenceError
from .types import ConversationState, Message, SummaryMap, ToolCallPart

logger = structlog.get_logger()

SUMMARY_LABEL = "tool-call history"
# Older snapshots stored the summary as a leading system message with this prefix
LEGACY_SUMMARY_PREFIX = "tool-call履歴"
COMPRESSION_PLACEHOLDER = "compression message"
MAX_NOTES = 10


def _compress_result(result: Any) -> Any:
    """Blank out the text of a tool result while keeping its shape."""
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        for item in result["content"]:
            if isinstance(item, dict) and item.get("type") == "text":
                item["text"] = COMPRESSION_PLACEHOLDER
        return result
    if isinstance(result, str):
        return COMPRESSION_PLACEHOLDER
    return result


def _merge_summary(summary: SummaryMap, message: Message) -> None:
    for part in message.parts:
        if isinstance(part, ToolCallPart) and part.tool_name:
            summary[part.tool_name] = part.args


class ConversationStore:
    """Owns the message log, the summary map and the short-term notes.

    Not internally synchronized: callers must serialize turns for one
    conversation (the agent holds a per-conversation lock).
    """

    def __init__(
        self,
        snapshot_path: Path | str | None = None,
        message_limit: int = 50,
        compression_limit: int = 0,
    ):
        if message_limit < 1:
            raise ValueError("message_limit must be at least 1")
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self.message_limit = message_limit
        self.compression_limit = compression_limit
        self.state = ConversationState()

    @property
    def messages(self) -> list[Message]:
        return self.state.messages

    @property
    def summary(self) -> SummaryMap | None:
        return self.state.summary

    @property
    def notes(self) -> list[str]:
        return self.state.short_term_notes

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    def append(self, message: Union[Message, Iterable[Message]]) -> None:
        """Append one or more messages, then evict and compress."""
        if isinstance(message, Message):
            self.state.messages.append(message)
        else:
            self.state.messages.extend(message)

        self._evict()

        if self.compression_limit > 0 and len(self.state.messages) > self.compression_limit:
            self.compress(self.compression_limit)

    def _evict(self) -> None:
        messages = self.state.messages
        evicted = 0

        while len(messages) > self.message_limit:
            summary = self.state.summary
            if summary is None:
                summary = self.state.summary = {}

            group = [messages.pop(0)]
            pending = group[0].tool_call_ids()
            seen: set[str] = set()

            # Pull out every partner sharing a tool-call id, transitively
            while pending:
                call_id = pending.pop()
                seen.add(call_id)
                remaining = []
                for msg in messages:
                    if call_id in msg.tool_call_ids():
                        group.append(msg)
                        pending |= msg.tool_call_ids() - seen
                    else:
                        remaining.append(msg)
                messages[:] = remaining

            for msg in group:
                _merge_summary(summary, msg)
            evicted += len(group)

        if evicted:
            logger.debug(
                "Evicted messages",
                evicted=evicted,
                resident=len(messages),
                summarized_tools=len(self.state.summary or {}),
            )

    def compress(self, n: int) -> None:
        """Replace tool-result text in the oldest ``n`` messages with a placeholder."""
        for message in self.state.messages[:n]:
            for part in message.tool_results:
                part.result = _compress_result(part.result)

    def clear(self) -> None:
        """Drop all messages and the summary; notes survive."""
        self.state.messages = []
        self.state.summary = None
        logger.info("Conversation cleared")

    # ------------------------------------------------------------------ #
    # Short-term notes
    # ------------------------------------------------------------------ #

    def add_note(self, text: str) -> str:
        text = text.strip() if isinstance(text, str) else ""
        if not text:
            raise ValueError("text must be a non-empty string")
        if len(self.notes) >= MAX_NOTES:
            raise ValueError(f"memory limit ({MAX_NOTES}) exceeded")
        self.notes.append(text)
        return text

    def remove_note(self, index: int) -> str:
        if not isinstance(index, int) or index < 0 or index >= len(self.notes):
            raise IndexError("index out of range")
        return self.notes.pop(index)

    # ------------------------------------------------------------------ #
    # Provider context
    # ------------------------------------------------------------------ #

    def context_messages(self, now: datetime | None = None) -> list[Message]:
        """Summary, time and notes as leading system messages, then history."""
        context: list[Message] = []

        if self.state.summary is not None:
            summary_json = json.dumps(self.state.summary, ensure_ascii=False)
            context.append(Message(role="system", content=f"{SUMMARY_LABEL} {summary_json}"))

        now = now or datetime.now()
        context.append(Message(role="system", content=f"Current time: {now:%Y-%m-%d %H:%M}"))

        if self.notes:
            notes = "\n".join(f"* {note}" for note in self.notes)
            context.append(Message(role="system", content=f"Short-term memory:\n{notes}"))

        context.extend(self.state.messages)
        return context

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def snapshot(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.state.messages],
            "short_term_notes": list(self.notes),
            "summary": self.state.summary,
        }

    def persist(self) -> None:
        """Write the snapshot atomically.

        Raises:
            PersistenceError: if the file cannot be written
        """
        if self.snapshot_path is None:
            return

        payload = json.dumps(self.snapshot(), ensure_ascii=False, indent=2)
        tmp_path = self.snapshot_path.with_name(self.snapshot_path.name + ".tmp")
        try:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.snapshot_path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.snapshot_path}: {e}") from e

        logger.debug("Conversation persisted", path=str(self.snapshot_path), messages=len(self.messages))

    def restore(self) -> ConversationState:
        """Load the snapshot; a missing or corrupt file yields an empty state."""
        self.state = ConversationState()

        if self.snapshot_path is None or not self.snapshot_path.exists():
            return self.state

        try:
            self.state = self._parse_snapshot(
                json.loads(self.snapshot_path.read_text(encoding="utf-8"))
            )
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(
                "Failed to restore conversation, starting empty",
                path=str(self.snapshot_path),
                error=str(e),
            )
            self.state = ConversationState()
            return self.state

        del self.state.short_term_notes[MAX_NOTES:]
        self._evict()
        logger.info(
            "Conversation restored",
            messages=len(self.messages),
            notes=len(self.notes),
        )
        return self.state

    @staticmethod
    def _parse_snapshot(data: Any) -> ConversationState:
        if not isinstance(data, dict):
            raise ValueError("snapshot must be a JSON object")

        raw_messages = data.get("messages") or []
        summary = data.get("summary")

        if raw_messages:
            first = raw_messages[0]
            content = first.get("content") if isinstance(first, dict) else None
            if (
                isinstance(first, dict)
                and first.get("role") == "system"
                and isinstance(content, str)
                and content.startswith((LEGACY_SUMMARY_PREFIX, SUMMARY_LABEL))
            ):
                body = content.removeprefix(LEGACY_SUMMARY_PREFIX).removeprefix(SUMMARY_LABEL)
                summary = json.loads(body.strip() or "{}")
                raw_messages = raw_messages[1:]

        if summary is not None and not isinstance(summary, dict):
            raise ValueError("summary must be a JSON object")

        notes = data.get("short_term_notes", data.get("short_memory")) or []
        if not all(isinstance(n, str) for n in notes):
            raise ValueError("short-term notes must be strings")

        return ConversationState(
            summary=summary,
            messages=[Message.from_dict(m) for m in raw_messages],
            short_term_notes=list(notes),
        )
