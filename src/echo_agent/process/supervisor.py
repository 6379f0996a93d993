"""
Process Supervisor - owns helper processes and MCP tool server sessions.

Helper processes are started in their own session so that signals reach
the whole process group (a shell command and whatever it spawned).
Shutdown is staged: SIGTERM, a grace window, SIGKILL, a final wait, all of
it bounded by an outer timeout so a hung child never blocks exit.
"""

import asyncio
import os
import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Coroutine

import structlog

from ..config import ToolServerConfig
from ..exceptions import ProcessLaunchError, ShutdownTimeout
from ..tools.mcp_source import McpToolSource

logger = structlog.get_logger()


class ProcessState(str, Enum):
    """Lifecycle of a supervised process."""

    STARTING = "starting"
    RUNNING = "running"
    TERMINATING = "terminating"
    EXITED = "exited"


@dataclass
class ProcessHandle:
    """A launched child process."""

    pid: int
    command: str
    process: asyncio.subprocess.Process = field(repr=False)
    state: ProcessState = ProcessState.STARTING
    returncode: int | None = None

    @property
    def signal(self) -> int | None:
        """Signal number that ended the process, if any."""
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None


class ProcessSupervisor:
    """Launches children and tears all of them down exactly once."""

    def __init__(
        self,
        grace_seconds: float = 3.0,
        kill_wait_seconds: float = 1.0,
        shutdown_timeout: float = 10.0,
    ):
        self.grace_seconds = grace_seconds
        self.kill_wait_seconds = kill_wait_seconds
        self.shutdown_timeout = shutdown_timeout
        self._handles: dict[int, ProcessHandle] = {}
        self._tool_sources: list[McpToolSource] = []
        self._tasks: set[asyncio.Task] = set()
        self._shutdown_started = False
        self._shutdown_done = asyncio.Event()

    @property
    def handles(self) -> list[ProcessHandle]:
        """Handles of processes that have not exited yet."""
        return list(self._handles.values())

    @property
    def tool_sources(self) -> list[McpToolSource]:
        return list(self._tool_sources)

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown_started

    # ------------------------------------------------------------------ #
    # Launching
    # ------------------------------------------------------------------ #

    async def launch(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
    ) -> ProcessHandle:
        """Start a child process.

        Without ``args`` the command string runs through the shell.

        Raises:
            ProcessLaunchError: if the process cannot be spawned
        """
        if self.is_shut_down:
            raise ProcessLaunchError("Supervisor is shutting down")

        display = " ".join([command, *args]) if args is not None else command
        try:
            if args is None:
                process = await asyncio.create_subprocess_shell(
                    command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    start_new_session=True,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    command,
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    start_new_session=True,
                )
        except OSError as e:
            raise ProcessLaunchError(f"Failed to start process '{display}': {e}") from e

        handle = ProcessHandle(pid=process.pid, command=display, process=process)
        self._handles[handle.pid] = handle

        log = logger.bind(pid=handle.pid)
        self._spawn(self._pump(process.stdout, log, "stdout"))
        self._spawn(self._pump(process.stderr, log, "stderr"))
        self._spawn(self._observe_exit(handle, log))

        handle.state = ProcessState.RUNNING
        log.info("Started process", command=display)
        return handle

    async def launch_all(self, commands: list[str]) -> list[ProcessHandle]:
        """Start every startup command; failures are logged and skipped."""
        if not commands:
            logger.info("No startup processes defined")
            return []

        handles = []
        for command in commands:
            try:
                handles.append(await self.launch(command))
            except ProcessLaunchError as e:
                logger.error("Startup process failed", command=command, error=str(e))
        return handles

    async def connect_tool_server(self, config: ToolServerConfig) -> McpToolSource | None:
        """Launch an MCP server over stdio; a failure excludes only this server."""
        if self.is_shut_down:
            return None
        try:
            source = await McpToolSource.connect(config)
        except ProcessLaunchError as e:
            logger.error("Failed to start/connect MCP server", command=config.command, error=str(e))
            return None
        self._tool_sources.append(source)
        return source

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #

    async def shutdown(self) -> None:
        """Close tool servers and stop every child within ``shutdown_timeout``.

        Safe to call from several termination paths; the work runs once and
        later callers wait for it. MCP sessions must be closed from the task
        that opened them, so call this from the task that ran startup.
        Children still alive when the budget runs out are sent SIGKILL
        without waiting.
        """
        if self._shutdown_started:
            await self._shutdown_done.wait()
            return

        self._shutdown_started = True
        deadline = asyncio.get_running_loop().time() + self.shutdown_timeout
        try:
            try:
                async with asyncio.timeout_at(deadline):
                    await self._close_tool_sources()
            except TimeoutError:
                self._log_timeout("tool servers")

            try:
                async with asyncio.timeout_at(deadline):
                    await self._stop_processes()
            except TimeoutError:
                self._log_timeout("processes")
                self._kill_remaining()
        finally:
            for task in list(self._tasks):
                task.cancel()
            self._shutdown_done.set()
            logger.info("Cleanup done")

    async def _close_tool_sources(self) -> None:
        logger.info("Cleaning up tool servers", count=len(self._tool_sources))
        sources, self._tool_sources = self._tool_sources, []
        for source in reversed(sources):
            try:
                await source.aclose()
            except Exception as e:
                logger.error("Failed to close MCP server", server=source.name, error=str(e))

    async def _stop_processes(self) -> None:
        running = [h for h in self._handles.values() if h.process.returncode is None]
        logger.info("Cleaning up processes", count=len(running))
        if running:
            await asyncio.gather(*(self._terminate(h) for h in running))

    def _log_timeout(self, stage: str) -> None:
        error = ShutdownTimeout(f"Shutdown exceeded {self.shutdown_timeout}s while stopping {stage}")
        logger.error(
            "Shutdown timed out",
            error=str(error),
            pids=[h.pid for h in self._handles.values() if h.process.returncode is None],
        )

    def _kill_remaining(self) -> None:
        for handle in self._handles.values():
            if handle.process.returncode is None:
                self._signal(handle, signal.SIGKILL)

    async def _terminate(self, handle: ProcessHandle) -> None:
        if handle.process.returncode is not None:
            self._mark_exited(handle, handle.process.returncode)
            return

        log = logger.bind(pid=handle.pid)
        handle.state = ProcessState.TERMINATING
        log.info("Terminating process")
        self._signal(handle, signal.SIGTERM)

        try:
            returncode = await asyncio.wait_for(handle.process.wait(), timeout=self.grace_seconds)
            self._mark_exited(handle, returncode)
            return
        except asyncio.TimeoutError:
            pass

        log.warning("Force killing process", grace_seconds=self.grace_seconds)
        self._signal(handle, signal.SIGKILL)

        try:
            returncode = await asyncio.wait_for(
                handle.process.wait(), timeout=self.kill_wait_seconds
            )
            self._mark_exited(handle, returncode)
        except asyncio.TimeoutError:
            log.error("Process did not exit after kill")

    @staticmethod
    def _signal(handle: ProcessHandle, sig: int) -> None:
        try:
            os.killpg(handle.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            try:
                handle.process.send_signal(sig)
            except ProcessLookupError:
                pass

    # ------------------------------------------------------------------ #
    # Observers
    # ------------------------------------------------------------------ #

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _mark_exited(self, handle: ProcessHandle, returncode: int) -> None:
        handle.state = ProcessState.EXITED
        handle.returncode = returncode
        self._handles.pop(handle.pid, None)

    async def _observe_exit(self, handle: ProcessHandle, log: Any) -> None:
        returncode = await handle.process.wait()
        self._mark_exited(handle, returncode)
        if handle.signal is not None:
            log.info("Process killed", signal=handle.signal)
        else:
            log.info("Process exited", code=returncode)

    @staticmethod
    async def _pump(stream: asyncio.StreamReader | None, log: Any, name: str) -> None:
        if stream is None:
            return
        async for line in stream:
            text = line.decode("utf-8", errors="replace").rstrip()
            if not text:
                continue
            if name == "stderr":
                log.warning("Process output", stream=name, line=text)
            else:
                log.info("Process output", stream=name, line=text)
