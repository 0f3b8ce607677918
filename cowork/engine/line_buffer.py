"""Incremental newline splitter for subprocess stdout.

Chunks from the pipe never align with line boundaries (or with
UTF-8 character boundaries), so bytes are decoded incrementally and
only complete lines are handed out.
"""
from __future__ import annotations

import codecs


class LineBuffer:
    """Accumulates stdout chunks and yields complete lines.

    The result of feeding a byte stream is independent of how it was
    chunked: ``feed(a + b)`` produces the same lines as ``feed(a)``
    followed by ``feed(b)``.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every line it completed (without newline)."""
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        return lines

    def flush(self) -> str | None:
        """Return the trailing partial line at EOF, if any."""
        self._pending += self._decoder.decode(b"", final=True)
        remainder, self._pending = self._pending, ""
        return remainder or None

    @property
    def pending(self) -> str:
        return self._pending
