"""
LLM factory for creating provider instances.
"""

from ..config import LLMConfig, Settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM

# Google and OpenRouter are reached through their OpenAI-compatible endpoints
PROVIDER_CLASSES: dict[str, type[BaseLLM]] = {
    "anthropic": AnthropicLLM,
    "openai": OpenAILLM,
    "google": OpenAILLM,
    "openrouter": OpenAILLM,
}


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create the adapter for the configured provider."""
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    llm_class = PROVIDER_CLASSES.get(config.provider)
    if llm_class is None:
        raise ValueError(f"Unknown LLM provider: {config.provider}")

    return llm_class(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
    )
