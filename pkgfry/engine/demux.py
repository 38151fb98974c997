"""Demultiplexer for the engine's attach stream.

A container attached without a TTY delivers stdout and stderr over one
connection as a sequence of frames::

    +------+---------+---------------------+-----------------+
    | tag  | padding | length (uint32, BE) | payload         |
    | 1 B  | 3 B     | 4 B                 | length bytes    |
    +------+---------+---------------------+-----------------+

The tag selects the stream (1 = stdout, 2 = stderr). A clean end of stream
is only allowed between frames; anything shorter is a protocol error.
"""

from __future__ import annotations

import logging
import struct
from typing import TYPE_CHECKING, BinaryIO, Protocol

from pkgfry.engine.streams import IteratorReader
from pkgfry.errors import ProtocolError, ShortReadError
from pkgfry.types import StreamType

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

HEADER_SIZE = 4
LENGTH_SIZE = 4

# Payloads are copied to the sinks in chunks of at most this size
DEMUX_CHUNK_SIZE = 64 * 1024  # 64KB


class ByteSource(Protocol):
    """Anything with a socket-like ``read``; b"" means end of stream."""

    def read(self, size: int = -1, /) -> bytes | None: ...


def read_exactly(source: ByteSource, size: int) -> bytes:
    """Read exactly ``size`` bytes, looping over short reads.

    Returns fewer bytes only when the source is exhausted first; the
    caller decides whether that is an error.
    """
    buf = bytearray()
    while len(buf) < size:
        chunk = source.read(size - len(buf))
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


class StreamDemultiplexer:
    """Split a multiplexed attach stream into stdout and stderr sinks.

    Attributes:
        out: Sink for stdout payloads.
        err: Sink for stderr payloads.
        chunk_size: Maximum bytes read per payload read.
    """

    def __init__(
        self,
        out: BinaryIO,
        err: BinaryIO,
        chunk_size: int = DEMUX_CHUNK_SIZE,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.out = out
        self.err = err
        self.chunk_size = chunk_size
        self.frames = 0

    def _sink_for(self, tag: int) -> BinaryIO:
        if tag == StreamType.STDOUT:
            return self.out
        if tag == StreamType.STDERR:
            return self.err
        raise ProtocolError(
            f"Wrong stream type: {tag}", code="unknown_stream", details={"tag": tag}
        )

    def parse(self, source: ByteSource) -> None:
        """Consume frames from ``source`` until a clean end of stream.

        Raises:
            ProtocolError: On an unknown stream tag.
            ShortReadError: When the stream ends inside a frame.
        """
        while True:
            header = read_exactly(source, HEADER_SIZE)
            if not header:
                logger.debug("Attach stream ended after %d frames", self.frames)
                return
            if len(header) < HEADER_SIZE:
                raise ShortReadError(HEADER_SIZE, len(header))

            sink = self._sink_for(header[0])

            raw_length = read_exactly(source, LENGTH_SIZE)
            if len(raw_length) < LENGTH_SIZE:
                raise ShortReadError(LENGTH_SIZE, len(raw_length))
            (length,) = struct.unpack(">I", raw_length)

            left = length
            while left > 0:
                chunk = source.read(min(self.chunk_size, left))
                if not chunk:
                    raise ShortReadError(length, length - left)
                sink.write(chunk)
                left -= len(chunk)
            self.frames += 1

    def __call__(self, response: httpx.Response) -> None:
        """Consume a streaming engine response (attach consumer)."""
        self.parse(IteratorReader(response.iter_bytes()))


def encode_frame(stream: StreamType | int, payload: bytes) -> bytes:
    """Encode one attach frame; the inverse of what the parser reads."""
    return struct.pack(">BxxxI", int(stream), len(payload)) + payload


__all__ = [
    "DEMUX_CHUNK_SIZE",
    "ByteSource",
    "StreamDemultiplexer",
    "encode_frame",
    "read_exactly",
]
