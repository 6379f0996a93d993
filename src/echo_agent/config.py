"""
Configuration management for echo-agent

Uses pydantic-settings for environment variable parsing and validation.
Values come from (highest priority first) constructor arguments, ``ECHO_*``
environment variables, a ``.env`` file, an optional JSON settings file and
an optional JSON list of MCP tool servers.
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import AliasChoices, BaseModel, Field
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_CONFIG_FILE = "settings/llm_configs.json"
DEFAULT_SERVER_CONFIG_FILE = "settings/server_configs.json"

logger = structlog.get_logger()

Provider = Literal["openrouter", "openai", "anthropic", "google"]


class LLMConfig(BaseModel):
    """Configuration for a single LLM provider."""

    provider: Provider = "openrouter"
    model: str = "openai/gpt-4o"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class ToolServerConfig(BaseModel):
    """An MCP tool server launched over stdio."""

    command: str
    args: list[str] = Field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None


def normalize_legacy_settings(data: dict[str, Any]) -> dict[str, Any]:
    """Map the older ``llm_configs.json`` keys onto settings field names.

    ``aiTools.ignore_list`` and ``aiTools.max_steps`` become top-level keys
    unless already set there, and ``toolClients`` becomes ``tool_clients``.
    """
    ai_tools = data.pop("aiTools", None)
    if isinstance(ai_tools, dict):
        for key in ("ignore_list", "max_steps"):
            if key in ai_tools:
                data.setdefault(key, ai_tools[key])
    if "toolClients" in data:
        data.setdefault("tool_clients", data.pop("toolClients"))
    return data


class LLMConfigFileSource(JsonConfigSettingsSource):
    """The JSON settings file, accepting the older key layout too."""

    def _read_file(self, file_path: Path) -> dict[str, Any]:
        return normalize_legacy_settings(super()._read_file(file_path))


class ServerConfigFileSource(PydanticBaseSettingsSource):
    """Reads ``tool_servers`` from a JSON array of MCP server entries.

    Entries without a command are skipped with a warning. A missing file
    means no servers.
    """

    def __init__(self, settings_cls: type[BaseSettings], path: str | Path):
        super().__init__(settings_cls)
        self.path = Path(path)

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        # Everything is produced at once in __call__
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            entries = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable server config file", path=str(self.path), error=str(e))
            return {}
        if not isinstance(entries, list):
            logger.warning("Server config file is not a list", path=str(self.path))
            return {}

        servers = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("command"):
                logger.warning("Skipping tool server without a command", path=str(self.path))
                continue
            servers.append(entry)
        return {"tool_servers": servers}


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="ECHO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
        populate_by_name=True,
    )

    # Application
    app_name: str = "echo-agent"
    log_level: str = "INFO"
    data_dir: Path = Field(default=Path("data"), description="Directory for the conversation snapshot")

    # Server
    host: str = "127.0.0.1"
    port: int = 3000

    # LLM
    provider: Provider = "openrouter"
    model: str = "openai/gpt-4o"
    max_tokens: int = 4096
    temperature: float = 0.7
    system_prompt: str = ""

    # Provider API keys, read without the ECHO_ prefix
    openrouter_api_key: str = Field(
        default="", validation_alias=AliasChoices("ECHO_OPENROUTER_API_KEY", "OPENROUTER_API_KEY")
    )
    openai_api_key: str = Field(
        default="", validation_alias=AliasChoices("ECHO_OPENAI_API_KEY", "OPENAI_API_KEY")
    )
    anthropic_api_key: str = Field(
        default="", validation_alias=AliasChoices("ECHO_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY")
    )
    google_api_key: str = Field(
        default="", validation_alias=AliasChoices("ECHO_GOOGLE_API_KEY", "GOOGLE_API_KEY")
    )

    # Conversation
    message_limit: int = Field(default=50, ge=1, description="Max resident messages")
    message_compression_limit: int = Field(
        default=0, ge=0, description="Oldest N messages whose tool results get compressed"
    )

    # Agent loop
    max_steps: int = Field(default=8, ge=1, description="Max provider steps per turn")
    timeout_seconds: float = Field(default=300, gt=0, description="Wall-clock budget per turn")
    error_message: str = "An error occurred. Please try again."

    # Tools
    ignore_list: list[str] = Field(default_factory=list, description="Tool names hidden from the model")
    tool_servers: list[ToolServerConfig] = Field(default_factory=list)
    tool_clients: list[str] = Field(default_factory=list, description="Built-in tool clients to load")

    # Processes
    startup_processes: list[str] = Field(default_factory=list, description="Shell commands run at startup")
    shutdown_grace_seconds: float = 3.0
    shutdown_kill_wait_seconds: float = 1.0
    shutdown_timeout_seconds: float = 10.0

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        json_file = os.getenv("ECHO_CONFIG_FILE", DEFAULT_CONFIG_FILE)
        server_file = os.getenv("ECHO_SERVER_CONFIG_FILE", DEFAULT_SERVER_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            LLMConfigFileSource(settings_cls, json_file=json_file),
            ServerConfigFileSource(settings_cls, server_file),
            file_secret_settings,
        )

    @property
    def snapshot_path(self) -> Path:
        """Path of the persisted conversation snapshot."""
        return self.data_dir / "messages.json"

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.provider

        api_key_map = {
            "openrouter": self.openrouter_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
        }

        base_url_map = {
            "openrouter": "https://openrouter.ai/api/v1",
            "openai": None,
            "anthropic": None,
            "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
        }

        return LLMConfig(
            provider=provider,  # type: ignore
            model=self.model,
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
