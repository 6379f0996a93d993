"""
LLM module for multi-provider streaming model support.

Providers:
- OpenRouter (via OpenAI-compatible endpoint)
- OpenAI GPT (native SDK)
- Anthropic Claude (native SDK)
- Google Gemini (via OpenAI-compatible endpoint)
"""

from .base import BaseLLM, StreamChunk, ToolCall, ToolManifest, render_tool_result
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "StreamChunk",
    "ToolCall",
    "ToolManifest",
    "render_tool_result",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
