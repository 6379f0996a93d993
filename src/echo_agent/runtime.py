"""
Runtime wiring: builds every component from settings and tears it down once.
"""

import structlog

from .agent import Agent
from .config import Settings, get_settings
from .conversation import ConversationStore
from .llm import BaseLLM, create_llm
from .process import ProcessSupervisor
from .tools import ToolRegistry, load_tool_clients

logger = structlog.get_logger()


class Runtime:
    """Owns the store, supervisor, registry and agent of one process."""

    def __init__(self, settings: Settings | None = None, llm: BaseLLM | None = None):
        self.settings = settings or get_settings()
        self._llm = llm
        self.store = ConversationStore(
            self.settings.snapshot_path,
            message_limit=self.settings.message_limit,
            compression_limit=self.settings.message_compression_limit,
        )
        self.supervisor = ProcessSupervisor(
            grace_seconds=self.settings.shutdown_grace_seconds,
            kill_wait_seconds=self.settings.shutdown_kill_wait_seconds,
            shutdown_timeout=self.settings.shutdown_timeout_seconds,
        )
        self.tool_registry = ToolRegistry(ignore_list=self.settings.ignore_list)
        self.agent: Agent | None = None

    async def start(self) -> Agent:
        """Restore history, launch children, aggregate tools, build the agent."""
        self.store.restore()

        await self.supervisor.launch_all(self.settings.startup_processes)

        for client in load_tool_clients(self.settings.tool_clients, self.store):
            self.tool_registry.add_source(client)

        for server in self.settings.tool_servers:
            source = await self.supervisor.connect_tool_server(server)
            if source is not None:
                self.tool_registry.add_source(source)

        await self.tool_registry.list_all()

        self.agent = Agent(
            llm=self._llm or create_llm(settings=self.settings),
            tool_registry=self.tool_registry,
            store=self.store,
            settings=self.settings,
        )
        logger.info(
            "Initialization complete",
            provider=self.settings.provider,
            model=self.settings.model,
            tools=len(self.tool_registry.manifests),
        )
        return self.agent

    async def shutdown(self) -> None:
        """Stop every child process and tool server; runs once."""
        if self.agent is not None:
            self.agent.cancel()
        await self.supervisor.shutdown()
