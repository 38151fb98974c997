"""Pull-based tar archive generator for build contexts.

The engine's build endpoint accepts the build context as a tar upload.
TarStream yields the archive chunk by chunk so the HTTP client can send it
while it is being produced; file contents are read lazily when their entry
is reached.

Archives are deterministic: entries appear in the mapping's order and all
metadata that is not content (mtime, owner) is fixed, so identical inputs
give byte-identical archives.
"""

from __future__ import annotations

import logging
import os
import stat
import tarfile
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from pkgfry.errors import SourceError

logger = logging.getLogger(__name__)

BLOCK_SIZE = tarfile.BLOCKSIZE
RECORD_SIZE = tarfile.RECORDSIZE

# Default chunk size for file contents
TAR_CHUNK_SIZE = 64 * 1024  # 64KB

DEFAULT_FILE_MODE = 0o644
DEFAULT_EXEC_MODE = 0o755


@dataclass(frozen=True)
class TarEntry:
    """An archive member with an explicit mode.

    Attributes:
        source: In-memory content or a path read when the entry is emitted.
        mode: Permission bits; derived from the source when None.
    """

    source: bytes | str | Path
    mode: int | None = None


TarSource = Union[bytes, str, Path, TarEntry]


def _entry_mode(mode: int | None, st_mode: int | None) -> int:
    if mode is not None:
        return mode
    if st_mode is not None and st_mode & stat.S_IXUSR:
        return DEFAULT_EXEC_MODE
    return DEFAULT_FILE_MODE


def _header(name: str, size: int, mode: int) -> bytes:
    info = tarfile.TarInfo(name)
    info.size = size
    info.mode = mode
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.type = tarfile.REGTYPE
    return info.tobuf(format=tarfile.GNU_FORMAT, encoding="utf-8", errors="strict")


def _padding(size: int) -> bytes:
    remainder = size % BLOCK_SIZE
    return b"\0" * (BLOCK_SIZE - remainder) if remainder else b""


class TarStream:
    """Single-use iterator producing a tar archive from a file map.

    Args:
        entries: Ordered mapping of archive member name to content source.
        chunk_size: Maximum size of chunks read from files.
    """

    def __init__(
        self,
        entries: Mapping[str, TarSource],
        chunk_size: int = TAR_CHUNK_SIZE,
    ) -> None:
        self.entries = dict(entries)
        self.chunk_size = chunk_size
        self.bytes_written = 0
        self._started = False

    def __iter__(self) -> Iterator[bytes]:
        if self._started:
            raise RuntimeError("TarStream can only be consumed once")
        self._started = True
        return self._generate()

    def _generate(self) -> Iterator[bytes]:
        for name, source in self.entries.items():
            for chunk in self._member(name, source):
                self.bytes_written += len(chunk)
                yield chunk

        # Two zero blocks end the archive, then pad to a full record
        trailer = b"\0" * (2 * BLOCK_SIZE)
        total = self.bytes_written + len(trailer)
        remainder = total % RECORD_SIZE
        if remainder:
            trailer += b"\0" * (RECORD_SIZE - remainder)
        self.bytes_written += len(trailer)
        logger.debug(
            "Generated tar stream with %d entries (%d bytes)",
            len(self.entries),
            self.bytes_written,
        )
        yield trailer

    def _member(self, name: str, source: TarSource) -> Iterator[bytes]:
        mode: int | None = None
        if isinstance(source, TarEntry):
            mode = source.mode
            source = source.source

        if isinstance(source, str):
            source = source.encode("utf-8")

        if isinstance(source, bytes):
            yield _header(name, len(source), _entry_mode(mode, None))
            if source:
                yield source
                yield _padding(len(source))
            return

        yield from self._file_member(name, source, mode)

    def _file_member(self, name: str, path: Path, mode: int | None) -> Iterator[bytes]:
        try:
            with path.open("rb") as f:
                st = os.fstat(f.fileno())
                size = st.st_size
                yield _header(name, size, _entry_mode(mode, st.st_mode))
                left = size
                while left > 0:
                    chunk = f.read(min(self.chunk_size, left))
                    if not chunk:
                        break
                    left -= len(chunk)
                    yield chunk
        except OSError as e:
            raise SourceError(
                f"Failed to read {path} for archive member {name}: {e}",
                code="read_error",
            ) from e
        if left:
            raise SourceError(
                f"{path} shrank while it was archived",
                code="source_changed",
            )
        yield _padding(size)


__all__ = [
    "BLOCK_SIZE",
    "DEFAULT_EXEC_MODE",
    "DEFAULT_FILE_MODE",
    "RECORD_SIZE",
    "TAR_CHUNK_SIZE",
    "TarEntry",
    "TarSource",
    "TarStream",
]
