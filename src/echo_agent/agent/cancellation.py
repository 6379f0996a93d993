"""
Cooperative cancellation for agent turns.
"""


class CancellationToken:
    """Flag threaded through a turn and checked at step and chunk boundaries.

    Tripping it never interrupts an in-flight tool call; the loop notices at
    its next suspension point.
    """

    def __init__(self):
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason
