"""
OpenAI GPT LLM provider (also works with OpenRouter, Gemini and compatible APIs).
"""

import json
from typing import Any, AsyncIterator

import openai
import structlog

from ..conversation import Message
from ..exceptions import ProviderError
from .base import BaseLLM, StreamChunk, ToolCall, ToolManifest, render_tool_result

logger = structlog.get_logger()


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert conversation messages to OpenAI format."""
        converted = []

        for msg in messages:
            if isinstance(msg.content, str):
                converted.append({"role": msg.role, "content": msg.content})
            elif msg.role == "tool":
                for result in msg.tool_results:
                    converted.append({
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "content": render_tool_result(result.result),
                    })
            elif msg.role == "assistant" and msg.tool_calls:
                tool_calls = [
                    {
                        "id": tc.tool_call_id,
                        "type": "function",
                        "function": {
                            "name": tc.tool_name,
                            "arguments": json.dumps(tc.args, ensure_ascii=False),
                        },
                    }
                    for tc in msg.tool_calls
                ]
                converted.append({
                    "role": "assistant",
                    "content": msg.text or None,
                    "tool_calls": tool_calls,
                })
            else:
                converted.append({"role": msg.role, "content": msg.text})

        return converted

    def _convert_tools(self, tools: list[ToolManifest]) -> list[dict[str, Any]]:
        """Convert ToolManifests to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in tools
        ]

    async def stream_completion(
        self,
        messages: list[Message],
        tools: list[ToolManifest] | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream one step from GPT."""
        converted_messages = self._convert_messages(messages)

        if system_prompt:
            converted_messages.insert(0, {"role": "system", "content": system_prompt})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
            "messages": converted_messages,
            "stream": True,
        }

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        # Tool-call deltas arrive in fragments keyed by index
        pending: dict[int, dict[str, str]] = {}

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content
                for tc in delta.tool_calls or []:
                    entry = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function:
                        if tc.function.name:
                            entry["name"] += tc.function.name
                        if tc.function.arguments:
                            entry["arguments"] += tc.function.arguments

        except openai.APIError as e:
            logger.error("OpenAI streaming error", error=str(e))
            raise

        for index in sorted(pending):
            entry = pending[index]
            try:
                arguments = json.loads(entry["arguments"]) if entry["arguments"] else {}
            except json.JSONDecodeError as e:
                raise ProviderError(f"Malformed arguments for tool '{entry['name']}': {e}") from e
            yield ToolCall(
                id=entry["id"] or f"call_{index}",
                name=entry["name"],
                arguments=arguments,
            )
