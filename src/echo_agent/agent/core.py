"""
Core agent loop.

One call to :meth:`Agent.submit` is one turn:
1. Appends the user utterance to the conversation store
2. Streams a model step, releasing clause-sized text chunks as they form
3. Executes requested tool calls through the registry and feeds results back
4. Repeats until the model answers without tools or the step budget is spent
5. Appends the turn's structured messages and persists the store

Errors, cancellation, timeouts and an abandoned event stream all end the
turn early without raising to the caller.
"""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Literal

import structlog

from ..config import Settings, get_settings
from ..conversation import ConversationStore, Message, TextPart, ToolCallPart, ToolResultPart
from ..exceptions import PersistenceError, ProviderError
from ..llm import BaseLLM, StreamChunk, ToolCall, create_llm
from ..tools import ToolRegistry
from .cancellation import CancellationToken
from .chunking import SentenceChunker

logger = structlog.get_logger()

EventKind = Literal["text", "tool_start", "tool_end", "error", "done"]


class TurnState(str, Enum):
    """Where the agent is within a turn."""

    IDLE = "idle"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    TOOL_EXECUTING = "tool_executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class AgentEvent:
    """An event streamed to the caller during a turn."""

    kind: EventKind
    text: str = ""


class Agent:
    """Drives turns against one conversation.

    Turns are serialized by a per-conversation lock: a second ``submit``
    waits until the running turn has appended and persisted its messages.
    """

    def __init__(
        self,
        llm: BaseLLM | None = None,
        tool_registry: ToolRegistry | None = None,
        store: ConversationStore | None = None,
        settings: Settings | None = None,
        system_prompt: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm or create_llm(settings=self.settings)
        self.tool_registry = tool_registry or ToolRegistry(ignore_list=self.settings.ignore_list)
        self.store = store or ConversationStore(
            self.settings.snapshot_path,
            message_limit=self.settings.message_limit,
            compression_limit=self.settings.message_compression_limit,
        )
        self.system_prompt = system_prompt if system_prompt is not None else self.settings.system_prompt
        self.max_steps = self.settings.max_steps
        self.timeout_seconds = self.settings.timeout_seconds
        self.temperature = self.settings.temperature

        self.state = TurnState.IDLE
        self._lock = asyncio.Lock()
        self._token: CancellationToken | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> bool:
        """Cancel the running turn, if any."""
        if self._token is None:
            return False
        self._token.cancel()
        logger.info("Cancellation requested")
        return True

    async def submit(
        self,
        utterance: str,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Run one turn and stream its events, ending with a ``done`` event.

        Closing the iterator early cancels the turn; whatever it produced so
        far is kept and persisted.
        """
        token = token or CancellationToken()

        async with self._lock:
            self._token = token
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.timeout_seconds
            timer = loop.call_later(self.timeout_seconds, token.cancel, "timeout")
            try:
                async with aclosing(self._run_turn(utterance, token, deadline)) as events:
                    async for event in events:
                        yield event
            finally:
                timer.cancel()
                self._token = None

            yield AgentEvent(kind="done")

    async def _run_turn(
        self,
        utterance: str,
        token: CancellationToken,
        deadline: float,
    ) -> AsyncIterator[AgentEvent]:
        self.state = TurnState.SUBMITTED
        self.store.append(Message(role="user", content=utterance))

        tools = self.tool_registry.manifests
        chunker = SentenceChunker()
        turn_messages: list[Message] = []
        # Output of the step in flight, folded into turn_messages when it ends
        step_text: list[str] = []
        results: list[ToolResultPart] | None = None
        completed = False
        steps = 0

        try:
            while steps < self.max_steps and not token.cancelled:
                steps += 1
                self.state = TurnState.STREAMING

                step_text = []
                tool_calls: list[ToolCall] = []
                context = self.store.context_messages() + turn_messages

                async with aclosing(self.llm.stream_completion(
                    messages=context,
                    tools=tools or None,
                    system_prompt=self.system_prompt or None,
                    temperature=self.temperature,
                )) as stream:
                    while not token.cancelled:
                        chunk = await self._next_chunk(stream, deadline, token)
                        if chunk is None:
                            break
                        if isinstance(chunk, ToolCall):
                            tool_calls.append(chunk)
                            continue
                        step_text.append(chunk)
                        for piece in chunker.feed(chunk):
                            if token.cancelled:
                                break
                            yield AgentEvent(kind="text", text=piece)

                if token.cancelled:
                    # Calls that never ran must not reach history unanswered
                    break

                parts: list = []
                text = "".join(step_text)
                if text:
                    parts.append(TextPart(text=text))
                parts.extend(
                    ToolCallPart(tool_call_id=tc.id, tool_name=tc.name, args=tc.arguments)
                    for tc in tool_calls
                )
                step_text = []
                if parts:
                    turn_messages.append(Message(role="assistant", content=parts))

                if not tool_calls:
                    completed = True
                    break

                self.state = TurnState.TOOL_EXECUTING
                results = []
                async with aclosing(self._execute_tools(tool_calls, results, token)) as events:
                    async for event in events:
                        yield event

                self._close_tool_phase(turn_messages, results)
                results = None

            if not completed and not token.cancelled:
                logger.info("Step limit reached", max_steps=self.max_steps)
                completed = True

            if token.cancelled:
                self._keep_partial(turn_messages, step_text, results)
            else:
                rest = chunker.flush()
                if rest:
                    yield AgentEvent(kind="text", text=rest)

        except (GeneratorExit, asyncio.CancelledError):
            # The consumer went away mid-turn; record what exists and stop
            token.cancel("closed")
            if not completed:
                self._keep_partial(turn_messages, step_text, results)
            self._finish(turn_messages, completed, token, steps)
            raise

        except Exception as e:
            error = e if isinstance(e, ProviderError) else ProviderError(str(e))
            logger.error(
                "Turn failed",
                error=str(error),
                error_type=type(e).__name__,
                steps=steps,
            )
            self.state = TurnState.FAILED
            yield AgentEvent(kind="error", text=self.settings.error_message)
            self.store.append(Message(role="system", content=self.settings.error_message))
            self._persist()
            return

        self._finish(turn_messages, completed, token, steps)

    async def _next_chunk(
        self,
        stream: AsyncIterator[StreamChunk],
        deadline: float,
        token: CancellationToken,
    ) -> StreamChunk | None:
        """Next provider chunk, or None once the step ends or the turn budget runs out."""
        timeout = asyncio.timeout_at(deadline)
        try:
            async with timeout:
                return await anext(stream)
        except StopAsyncIteration:
            return None
        except TimeoutError:
            if not timeout.expired():
                raise
            token.cancel("timeout")
            logger.warning("Provider stalled past the turn budget", timeout_seconds=self.timeout_seconds)
            return None

    def _finish(
        self,
        turn_messages: list[Message],
        completed: bool,
        token: CancellationToken,
        steps: int,
    ) -> None:
        if turn_messages:
            self.store.append(turn_messages)

        if completed:
            self.state = TurnState.COMPLETED
        else:
            self.state = TurnState.CANCELLED
            logger.info("Turn cancelled", reason=token.reason, steps=steps)

        self._persist()
        logger.info(
            "Turn finished",
            state=self.state.value,
            steps=steps,
            messages=len(self.store.messages),
        )

    def _keep_partial(
        self,
        turn_messages: list[Message],
        step_text: list[str],
        results: list[ToolResultPart] | None,
    ) -> None:
        """Fold an interrupted step into the turn's messages."""
        if results is not None:
            self._close_tool_phase(turn_messages, results)
        elif step_text:
            turn_messages.append(Message(role="assistant", content=[TextPart(text="".join(step_text))]))

    async def _execute_tools(
        self,
        tool_calls: list[ToolCall],
        results: list[ToolResultPart],
        token: CancellationToken,
    ) -> AsyncIterator[AgentEvent]:
        for call in tool_calls:
            if token.cancelled:
                break
            yield AgentEvent(kind="tool_start", text=call.name)
            result = await self.tool_registry.invoke(call.name, call.arguments)
            results.append(ToolResultPart(
                tool_call_id=call.id,
                tool_name=call.name,
                result=result.to_result_payload(),
            ))
            yield AgentEvent(kind="tool_end", text=call.name)

    @staticmethod
    def _close_tool_phase(turn_messages: list[Message], results: list[ToolResultPart]) -> None:
        """Attach results and drop calls that never got one."""
        answered = {r.tool_call_id for r in results}
        assistant = turn_messages[-1]
        if len(answered) < len(assistant.tool_calls):
            assistant.content = [
                p for p in assistant.parts
                if not isinstance(p, ToolCallPart) or p.tool_call_id in answered
            ]
            if not assistant.content:
                turn_messages.pop()
        if results:
            turn_messages.append(Message(role="tool", content=list(results)))

    def _persist(self) -> None:
        try:
            self.store.persist()
        except PersistenceError as e:
            logger.error("Failed to persist conversation", error=str(e))
