"""Reassemble newline-delimited text from arbitrarily chunked output."""
from __future__ import annotations

import codecs
from typing import AsyncIterable, AsyncIterator, List, Union

Chunk = Union[str, bytes]


class LineFramer:
    """Incremental line splitter.

    ``feed`` returns the lines completed by a chunk; the trailing partial line
    is held until more data arrives or ``flush`` is called at end of stream.
    Both ``\\n`` and ``\\r\\n`` terminate a line; a ``\\r`` that ends one chunk
    and a ``\\n`` that starts the next count as one terminator.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: Chunk) -> List[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return []
        self._pending += chunk
        parts = self._pending.split("\n")
        self._pending = parts.pop()
        return [part[:-1] if part.endswith("\r") else part for part in parts]

    def flush(self) -> List[str]:
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        # A bare "\n" terminator may still arrive after a trailing "\r"; at EOF it cannot.
        if tail.endswith("\r"):
            tail = tail[:-1]
        return [tail] if tail else []


async def iter_lines(chunks: AsyncIterable[Chunk], encoding: str = "utf-8") -> AsyncIterator[str]:
    framer = LineFramer(encoding)
    async for chunk in chunks:
        for line in framer.feed(chunk):
            yield line
    for line in framer.flush():
        yield line
