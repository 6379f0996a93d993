"""
Error taxonomy for echo-agent.

Per-turn errors are caught at the agent loop boundary and turned into an
``error`` event; process-lifecycle errors are isolated per child.
"""


class EchoAgentError(Exception):
    """Base class for all echo-agent errors."""


class ToolNotFound(EchoAgentError):
    """No registered tool source claims the requested tool name."""

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' not found")
        self.name = name


class ToolInvocationError(EchoAgentError):
    """A tool source failed to execute a call."""

    def __init__(self, name: str, message: str):
        super().__init__(f"Tool '{name}' failed: {message}")
        self.name = name


class ProviderError(EchoAgentError):
    """The language model provider failed during a turn."""


class PersistenceError(EchoAgentError):
    """The conversation snapshot could not be read or written."""


class ProcessLaunchError(EchoAgentError):
    """A child process or tool server could not be started."""


class ShutdownTimeout(EchoAgentError):
    """Child processes did not exit within the shutdown window.

    Only ever logged, never raised out of the supervisor.
    """
