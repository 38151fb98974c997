"""Recipe sources shipped into the source-stage image.

This module handles:
- Shipping a local directory into the build context
- Downloading and verifying source archives
- Fingerprinting source content for the build cache
- Emitting hints about suspicious source setups

Each source exposes ``fingerprint()`` (cache-relevant content only),
``file_map()`` (archive entries below ``source/``) and
``dockerfile_lines(entries)`` (manifest instructions that unpack them).
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
import shutil
import stat
import tempfile
from fnmatch import fnmatchcase
from pathlib import Path
from urllib.parse import urlparse

import httpx

from pkgfry.engine.tar_stream import TarEntry, TarSource
from pkgfry.errors import SourceError
from pkgfry.hints import hint

logger = logging.getLogger(__name__)

# Archive directory that receives source entries
SOURCE_PREFIX = "source"

# Directory inside the image that receives the source
BUILD_DIR = "/tmp/build"

# Chunk size for hashing and downloads (bytes)
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

SHA256_HEX_LENGTH = 64


def compute_file_sha256(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


class Source:
    """Base class of recipe sources. The base ships nothing."""

    kind = "none"

    def fingerprint(self) -> dict[str, object]:
        return {"type": self.kind}

    def file_map(self) -> dict[str, TarSource]:
        return {}

    def dockerfile_lines(self, entries: dict[str, TarSource]) -> list[str]:
        return []

    def lint(self) -> list[str]:
        return []

    def prepare(self, client: httpx.Client) -> None:
        """Make the source available locally. Nothing to do by default."""


class DirSource(Source):
    """A local directory copied into the build directory.

    Args:
        path: Directory to ship.
        exclude: Glob patterns of relative paths that are not shipped.
    """

    kind = "dir"

    def __init__(self, path: Path, exclude: list[str] | None = None) -> None:
        self.path = path
        self.exclude = list(exclude or [])

    def _excluded(self, rel_path: str) -> bool:
        parts = rel_path.split("/")
        prefixes = ["/".join(parts[: i + 1]) for i in range(len(parts))]
        return any(
            fnmatchcase(prefix, pattern)
            for pattern in self.exclude
            for prefix in prefixes
        )

    def _files(self, emit_hints: bool = False) -> list[tuple[str, Path]]:
        """Collect (relative path, file) pairs in sorted order.

        Symlinks are shipped as the content they point to; symlinks leaving
        the source tree are skipped.
        """
        root = self.path.resolve()
        files: list[tuple[str, Path]] = []
        shipped_git = False
        for item in sorted(self.path.rglob("*")):
            rel_path = item.relative_to(self.path).as_posix()
            if self._excluded(rel_path):
                continue
            if item.name == ".git" and item.is_dir():
                shipped_git = True
            if item.is_symlink():
                target = item.resolve()
                try:
                    target.relative_to(root)
                except ValueError:
                    if emit_hints:
                        hint(
                            "Symlink %s points outside the source directory "
                            "and was skipped",
                            rel_path,
                        )
                    continue
            if item.is_file():
                files.append((rel_path, item))
        if emit_hints:
            if shipped_git:
                hint(
                    "The source directory %s contains .git; add it to exclude "
                    "to keep it out of the build context",
                    self.path,
                )
            if not files:
                hint("The source directory %s is empty", self.path)
        return files

    def fingerprint(self) -> dict[str, object]:
        """Hash relative path, mode and content of every shipped file.

        Modification times are not part of the fingerprint.
        """
        if not self.path.is_dir():
            raise SourceError(
                f"Source directory not found: {self.path}", code="source_missing"
            )
        sha256 = hashlib.sha256()
        for rel_path, item in self._files():
            mode = stat.S_IMODE(item.stat().st_mode)
            sha256.update(rel_path.encode("utf-8"))
            sha256.update(b"\0")
            sha256.update(f"{mode:o}".encode())
            sha256.update(b"\0")
            sha256.update(compute_file_sha256(item).encode())
            sha256.update(b"\0")
        return {"type": self.kind, "tree": sha256.hexdigest()}

    def file_map(self) -> dict[str, TarSource]:
        if not self.path.is_dir():
            raise SourceError(
                f"Source directory not found: {self.path}", code="source_missing"
            )
        return {
            posixpath.join(SOURCE_PREFIX, rel_path): item
            for rel_path, item in self._files(emit_hints=True)
        }

    def dockerfile_lines(self, entries: dict[str, TarSource]) -> list[str]:
        if not entries:
            return []
        return [f"COPY {SOURCE_PREFIX}/ {BUILD_DIR}/"]

    def lint(self) -> list[str]:
        if not self.path.is_dir():
            return [f"Source directory {self.path} does not exist"]
        return []


class UrlSource(Source):
    """A tar archive downloaded once and cached by checksum.

    Args:
        url: Archive URL.
        checksum: Expected SHA-256 of the archive.
        cache_dir: Directory holding downloaded archives.
        timeout: Download timeout in seconds.
    """

    kind = "url"

    def __init__(
        self,
        url: str,
        checksum: str | None,
        cache_dir: Path,
        timeout: float = 3600,
    ) -> None:
        self.url = url
        self.checksum = checksum.lower() if checksum else None
        self.cache_dir = cache_dir
        self.timeout = timeout

    @property
    def filename(self) -> str:
        name = posixpath.basename(urlparse(self.url).path)
        return name or "source.tar"

    @property
    def cache_path(self) -> Path:
        key = self.checksum or hashlib.sha256(self.url.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{key}-{self.filename}"

    def fingerprint(self) -> dict[str, object]:
        return {"type": self.kind, "url": self.url, "checksum": self.checksum}

    def file_map(self) -> dict[str, TarSource]:
        if self.url.startswith("http://"):
            hint(
                "%s is downloaded over plain http; prefer https when available",
                self.url,
            )
        return {
            posixpath.join(SOURCE_PREFIX, self.filename): TarEntry(
                self.cache_path, mode=0o644
            )
        }

    def dockerfile_lines(self, entries: dict[str, TarSource]) -> list[str]:
        return [f"ADD {name} {BUILD_DIR}/" for name in entries]

    def lint(self) -> list[str]:
        if not self.checksum:
            return [f"Source {self.url} has no checksum"]
        if len(self.checksum) != SHA256_HEX_LENGTH or any(
            c not in "0123456789abcdef" for c in self.checksum
        ):
            return [f"Checksum of {self.url} is not a SHA-256 hex digest"]
        return []

    def prepare(self, client: httpx.Client) -> None:
        """Download the archive unless a verified copy is cached.

        Raises:
            SourceError: If the download fails or the checksum mismatches.
        """
        dest_path = self.cache_path
        if dest_path.exists():
            if self.checksum is None or compute_file_sha256(dest_path) == self.checksum:
                logger.info("Using cached download %s", dest_path.name)
                return
            logger.warning("Cached download %s is corrupt, downloading again", dest_path)
            dest_path.unlink()

        dest_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %s to %s", self.url, dest_path)

        # Download into a temporary file next to the final location
        with tempfile.NamedTemporaryFile(
            dir=dest_path.parent, prefix=".download-", delete=False
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                sha256 = hashlib.sha256()
                total_bytes = 0
                with client.stream("GET", self.url, timeout=self.timeout) as response:
                    response.raise_for_status()
                    for chunk in response.iter_bytes(HASH_CHUNK_SIZE):
                        tmp.write(chunk)
                        sha256.update(chunk)
                        total_bytes += len(chunk)
            except httpx.HTTPStatusError as e:
                tmp_path.unlink(missing_ok=True)
                raise SourceError(
                    f"HTTP error downloading {self.url}: "
                    f"{e.response.status_code} {e.response.reason_phrase}",
                    code="http_error",
                ) from e
            except httpx.TimeoutException as e:
                tmp_path.unlink(missing_ok=True)
                raise SourceError(
                    f"Timeout downloading {self.url}", code="timeout"
                ) from e
            except httpx.RequestError as e:
                tmp_path.unlink(missing_ok=True)
                raise SourceError(
                    f"Network error downloading {self.url}: {e}",
                    code="network_error",
                ) from e

        computed = sha256.hexdigest()
        if self.checksum and computed != self.checksum:
            # Remove the corrupted file
            tmp_path.unlink(missing_ok=True)
            raise SourceError(
                f"Checksum mismatch for {self.url}: "
                f"expected {self.checksum}, got {computed}",
                code="checksum_mismatch",
            )

        shutil.move(str(tmp_path), dest_path)
        logger.info(
            "Downloaded %s (%d bytes, checksum: %s)",
            dest_path.name,
            total_bytes,
            computed[:16] + "...",
        )


__all__ = [
    "BUILD_DIR",
    "DirSource",
    "SOURCE_PREFIX",
    "Source",
    "UrlSource",
    "compute_file_sha256",
]
