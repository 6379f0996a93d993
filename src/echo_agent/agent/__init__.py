"""
Agent module - the turn loop of the system.

Includes:
- Agent: Streams model steps, runs tool calls, maintains history
- AgentEvent: Events streamed to the caller during a turn
- SentenceChunker: Clause-sized text chunking for speech output
- CancellationToken: Cooperative cancellation of a running turn
"""

from .cancellation import CancellationToken
from .chunking import SentenceChunker
from .core import Agent, AgentEvent, TurnState

__all__ = [
    "Agent",
    "AgentEvent",
    "TurnState",
    "SentenceChunker",
    "CancellationToken",
]
