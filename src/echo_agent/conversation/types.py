"""
Conversation data model.

Messages carry either plain text or an ordered list of parts. The JSON
shape of parts follows the ``tool-call`` / ``tool-result`` layout so that
snapshots stay readable by other clients of the same history file.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Union

Role = Literal["user", "assistant", "system", "tool"]


@dataclass
class TextPart:
    """Plain text inside a structured message."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolCallPart:
    """A tool call requested by the model."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool-call",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
        }


@dataclass
class ToolResultPart:
    """The result of executing a tool call."""

    tool_call_id: str
    tool_name: str
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool-result",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "result": self.result,
        }


Part = Union[TextPart, ToolCallPart, ToolResultPart]


def part_from_dict(data: dict[str, Any]) -> Part:
    """Rebuild a part from its JSON form."""
    kind = data.get("type")
    if kind == "text":
        return TextPart(text=data.get("text", ""))
    if kind == "tool-call":
        return ToolCallPart(
            tool_call_id=data["toolCallId"],
            tool_name=data.get("toolName", ""),
            args=data.get("args") or {},
        )
    if kind == "tool-result":
        return ToolResultPart(
            tool_call_id=data["toolCallId"],
            tool_name=data.get("toolName", ""),
            result=data.get("result"),
        )
    raise ValueError(f"Unknown message part type: {kind!r}")


@dataclass
class Message:
    """A message in the conversation."""

    role: Role
    content: Union[str, list[Part]]

    @property
    def parts(self) -> list[Part]:
        """Structured parts; plain-text content yields an empty list."""
        if isinstance(self.content, str):
            return []
        return self.content

    @property
    def text(self) -> str:
        """All text carried by the message."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]

    def tool_call_ids(self) -> set[str]:
        """Ids of every tool call or tool result carried by this message."""
        return {
            p.tool_call_id
            for p in self.parts
            if isinstance(p, (ToolCallPart, ToolResultPart))
        }

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [p.to_dict() for p in self.content]
        return {"role": self.role, "content": content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        role = data["role"]
        if role not in ("user", "assistant", "system", "tool"):
            raise ValueError(f"Unknown message role: {role!r}")
        content = data.get("content", "")
        if isinstance(content, list):
            content = [part_from_dict(p) for p in content]
        elif not isinstance(content, str):
            raise ValueError("Message content must be a string or a list of parts")
        return cls(role=role, content=content)


# tool_name -> most recent args of an evicted call
SummaryMap = dict[str, Any]


@dataclass
class ConversationState:
    """Everything the store owns: rolling summary, resident messages, notes."""

    summary: SummaryMap | None = None
    messages: list[Message] = field(default_factory=list)
    short_term_notes: list[str] = field(default_factory=list)
