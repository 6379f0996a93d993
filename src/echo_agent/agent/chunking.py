"""
Clause-sized chunking of streamed model text for speech synthesis.
"""

SENTENCE_DELIMITERS = frozenset("。、！")
MIN_CHUNK_LENGTH = 10


class SentenceChunker:
    """Buffers text fragments and releases them at clause boundaries.

    A chunk is released once the buffer holds at least ``min_length``
    characters and a delimiter occurs at or after index ``min_length``; the
    chunk ends with that delimiter. Whatever remains is kept for the next
    fragment or returned by :meth:`flush`.
    """

    def __init__(self, min_length: int = MIN_CHUNK_LENGTH, delimiters=SENTENCE_DELIMITERS):
        self.min_length = min_length
        self.delimiters = frozenset(delimiters)
        self._buffer = ""

    @property
    def buffer(self) -> str:
        return self._buffer

    def feed(self, fragment: str) -> list[str]:
        """Add a fragment and return every chunk that became complete."""
        if fragment:
            self._buffer += fragment

        chunks = []
        while len(self._buffer) >= self.min_length:
            cut = self._find_boundary()
            if cut == -1:
                break
            chunks.append(self._buffer[:cut])
            self._buffer = self._buffer[cut:]
        return chunks

    def flush(self) -> str | None:
        """Return the remainder unless it is empty or whitespace."""
        rest, self._buffer = self._buffer, ""
        return rest if rest.strip() else None

    def _find_boundary(self) -> int:
        for i in range(self.min_length, len(self._buffer)):
            if self._buffer[i] in self.delimiters:
                return i + 1
        return -1
