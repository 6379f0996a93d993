"""
Anthropic Claude LLM provider.
"""

from typing import Any, AsyncIterator

import anthropic
import structlog

from ..conversation import Message
from .base import BaseLLM, StreamChunk, ToolCall, ToolManifest, render_tool_result

logger = structlog.get_logger()


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert conversation messages to Anthropic format (system messages excluded)."""
        converted = []

        for msg in messages:
            if msg.role == "system":
                continue

            if msg.role == "tool":
                converted.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": result.tool_call_id,
                            "content": render_tool_result(result.result),
                        }
                        for result in msg.tool_results
                    ],
                })
            elif msg.role == "assistant" and msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.text:
                    content.append({"type": "text", "text": msg.text})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.tool_call_id,
                        "name": tc.tool_name,
                        "input": tc.args,
                    })
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.text,
                })

        return converted

    def _convert_tools(self, tools: list[ToolManifest]) -> list[dict[str, Any]]:
        """Convert ToolManifests to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in tools
        ]

    def _extract_system_prompt(
        self, messages: list[Message], system_prompt: str | None
    ) -> str | None:
        """Join the configured prompt with every system message in the context."""
        parts = [system_prompt] if system_prompt else []
        parts.extend(msg.text for msg in messages if msg.role == "system")
        return "\n\n".join(parts) if parts else None

    async def stream_completion(
        self,
        messages: list[Message],
        tools: list[ToolManifest] | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream one step from Claude."""
        system = self._extract_system_prompt(messages, system_prompt)
        converted_messages = self._convert_messages(messages)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
            "messages": converted_messages,
        }

        if system:
            kwargs["system"] = system

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield text
                final = await stream.get_final_message()

        except anthropic.APIError as e:
            logger.error("Anthropic streaming error", error=str(e))
            raise

        for block in final.content:
            if block.type == "tool_use":
                yield ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=dict(block.input) if isinstance(block.input, dict) else {},
                )
