"""Byte stream adapters used around engine responses.

- IteratorReader turns an iterator of byte chunks (e.g. an httpx response
  body) into a readable binary stream whose ``read`` may return short.
- Tee writes every chunk to several binary sinks.
"""

from __future__ import annotations

import io
from collections.abc import Iterable, Iterator
from typing import BinaryIO


class IteratorReader(io.RawIOBase):
    """Readable raw stream over an iterator of byte chunks.

    ``read(n)`` returns at most ``n`` bytes and at most what is left of the
    current chunk, so callers see the same partial reads a socket gives.
    """

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks: Iterator[bytes] = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[no-untyped-def]
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


class Tee:
    """Write-only sink that forwards to several binary sinks."""

    def __init__(self, *sinks: BinaryIO | None) -> None:
        self.sinks = [s for s in sinks if s is not None]

    def write(self, data: bytes) -> int:
        for sink in self.sinks:
            sink.write(data)
        return len(data)

    def flush(self) -> None:
        for sink in self.sinks:
            sink.flush()


__all__ = ["IteratorReader", "Tee"]
