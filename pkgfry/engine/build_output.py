"""Parser for the engine's image build progress stream.

The build endpoint answers with a stream of JSON objects such as::

    {"stream": "Step 1/4 : FROM debian:12\\n"}
    {"stream": " ---> 5f2c1a7d0e9b\\n"}
    {"aux": {"ID": "sha256:..."}}
    {"stream": "Successfully built 5f2c1a7d0e9b\\n"}
    {"error": "...", "errorDetail": {"code": 1, "message": "..."}}

Objects may be split across network chunks or several may share one
chunk. Text fragments are forwarded to a live sink as they arrive and every
image id found is recorded; the last one is the built image.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, BinaryIO

from pkgfry.errors import BuildFailure, ProtocolError

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

IMAGE_ID_PATTERN = re.compile(r"Successfully built ([0-9a-f]{12,64})\b")

# A single undecodable object larger than this aborts parsing
MAX_PENDING_BYTES = 16 * 1024 * 1024


class BuildOutputParser:
    """Incremental consumer of a build progress stream.

    Attributes:
        out: Binary sink receiving the human-readable progress text.
        images: Image id candidates in the order they were seen.
        errors: Error messages reported by the engine.
    """

    def __init__(self, out: BinaryIO | None = None) -> None:
        self.out = out
        self.images: list[str] = []
        self.errors: list[str] = []
        self._decoder = json.JSONDecoder()
        self._pending = ""
        self._undecoded = b""

    def feed(self, chunk: bytes) -> None:
        """Feed one raw chunk of the response body."""
        data = self._undecoded + chunk
        try:
            text = data.decode("utf-8")
            self._undecoded = b""
        except UnicodeDecodeError as e:
            # Chunk boundary inside a multi-byte character
            text = data[: e.start].decode("utf-8")
            self._undecoded = data[e.start :]
        self._pending += text
        self._drain()

    def _drain(self) -> None:
        pos = 0
        pending = self._pending
        while True:
            while pos < len(pending) and pending[pos].isspace():
                pos += 1
            if pos >= len(pending):
                break
            try:
                obj, end = self._decoder.raw_decode(pending, pos)
            except json.JSONDecodeError:
                # Incomplete object, wait for more data
                break
            self.handle(obj)
            pos = end
        self._pending = pending[pos:]
        if len(self._pending) > MAX_PENDING_BYTES:
            raise ProtocolError(
                "Build output contains an oversized or malformed message",
                code="malformed_build_output",
            )

    def handle(self, event: Any) -> None:
        """Handle one decoded progress object."""
        if not isinstance(event, dict):
            logger.debug("Ignoring non-object build event: %r", event)
            return

        text = event.get("stream")
        if isinstance(text, str):
            self._write(text)
            for match in IMAGE_ID_PATTERN.finditer(text):
                self.images.append(match.group(1))

        status = event.get("status")
        if isinstance(status, str):
            self._write(status + "\n")

        aux = event.get("aux")
        if isinstance(aux, dict) and isinstance(aux.get("ID"), str):
            self.images.append(aux["ID"])

        error = event.get("error")
        if error:
            message = str(error)
            self.errors.append(message)
            self._write(message if message.endswith("\n") else message + "\n")

    def _write(self, text: str) -> None:
        if self.out is not None:
            self.out.write(text.encode("utf-8"))
            self.out.flush()

    def close(self) -> None:
        """Signal end of stream; trailing garbage is a protocol error."""
        if self._undecoded or self._pending.strip():
            raise ProtocolError(
                "Build output ended inside a message",
                code="malformed_build_output",
            )

    def __call__(self, response: httpx.Response) -> None:
        """Consume a streaming engine response (build consumer)."""
        for chunk in response.iter_bytes():
            self.feed(chunk)
        self.close()

    @property
    def image(self) -> str:
        """The authoritative image id (the last candidate).

        Raises:
            BuildFailure: If no image id was found.
        """
        if not self.images:
            raise BuildFailure(
                "No build image found in the output. "
                "This usually means that the build script failed.",
                code="no_build_image",
                details={"errors": list(self.errors)},
            )
        return self.images[-1]


__all__ = ["IMAGE_ID_PATTERN", "BuildOutputParser"]
