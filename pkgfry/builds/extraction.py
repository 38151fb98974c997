"""Extraction of built files into package staging areas.

This module handles:
- Building the pattern -> package map (last declared pattern wins)
- Matching container paths against file patterns
- Selecting the files a build changed
- Streaming them out of the container into staging areas

Only files reported by the engine's change list are extracted, so the
contents of the build image itself never end up in a package.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import tarfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from pkgfry.errors import FileNotFoundInContainerError, PkgfryError
from pkgfry.types import ChangeKind

if TYPE_CHECKING:
    from pkgfry.builds.packages import PackageWriter
    from pkgfry.engine.client import EngineClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Scratch locations whose changes are never packaged
IGNORED_PATHS = (
    "/tmp",
    "/var/tmp",
    "/dev",
    "/proc",
    "/sys",
    "/run",
    "/var/cache",
    "/var/log",
)

GLOB_CHARACTERS = "*?["


class ExtractionError(PkgfryError):
    """Raised when an archive member cannot be written to a staging area."""

    default_code = "extraction_error"


@dataclass
class ExtractionResult:
    """Files written per package.

    Attributes:
        files: Absolute container paths per package name.
        unclaimed: Changed files no package claimed.
    """

    files: dict[str, list[str]] = field(default_factory=dict)
    unclaimed: list[str] = field(default_factory=list)


def build_file_map(entries: Sequence[tuple[str, T]]) -> dict[str, T]:
    """Build the ordered pattern -> owner map.

    Entries are in declared order. The map is built from the reversed
    order, keeping the first occurrence of each pattern, so the last
    declared entry wins for identical patterns and is consulted first
    for overlapping ones.
    """
    file_map: dict[str, T] = {}
    for pattern, owner in reversed(entries):
        if pattern not in file_map:
            file_map[pattern] = owner
    return file_map


def _ancestors(path: str) -> list[str]:
    ancestors = []
    while path != "/":
        path = posixpath.dirname(path)
        ancestors.append(path)
    return ancestors


def pattern_matches(pattern: str, path: str) -> bool:
    """Whether a pattern claims a path.

    A pattern claims paths it matches and everything below a directory it
    matches.
    """
    if fnmatchcase(path, pattern):
        return True
    return any(fnmatchcase(ancestor, pattern) for ancestor in _ancestors(path))


def owner_for(path: str, file_map: dict[str, T]) -> T | None:
    """Return the owner of the first matching pattern, or None."""
    for pattern, owner in file_map.items():
        if pattern_matches(pattern, path):
            return owner
    return None


def is_excluded(path: str, excludes: Iterable[str]) -> bool:
    return any(pattern_matches(pattern, path) for pattern in excludes)


def static_prefix(pattern: str) -> str:
    """Leading path components of a pattern without glob characters."""
    parts = []
    for part in pattern.strip("/").split("/"):
        if not part or any(c in part for c in GLOB_CHARACTERS):
            break
        parts.append(part)
    return "/" + "/".join(parts)


def _is_below(path: str, parent: str) -> bool:
    return parent == "/" or path == parent or path.startswith(parent + "/")


def changed_roots(changes: list[dict[str, object]]) -> dict[str, ChangeKind]:
    """Reduce a change list to the paths that have to be fetched.

    Paths below an added path are covered by fetching the added path.
    Modified paths with changed descendants are directories and are
    dropped; their own changes are listed separately. A modified root is
    only fetched for itself, never for the content below it.

    Returns:
        Sorted mapping of root path to its change kind.
    """
    all_paths = set()
    kinds: dict[str, ChangeKind] = {}
    for change in changes:
        path = posixpath.normpath(str(change["Path"]))
        all_paths.add(path)
        kind = ChangeKind(int(change["Kind"]))  # type: ignore[arg-type]
        if kind == ChangeKind.DELETED:
            continue
        if any(_is_below(path, ignored) for ignored in IGNORED_PATHS):
            continue
        kinds[path] = kind

    roots: dict[str, ChangeKind] = {}
    added_roots: list[str] = []
    for path in sorted(kinds):
        if any(_is_below(path, added) for added in added_roots):
            continue
        if kinds[path] == ChangeKind.ADDED:
            added_roots.append(path)
            roots[path] = ChangeKind.ADDED
            continue
        if any(other != path and _is_below(other, path) for other in all_paths):
            continue
        roots[path] = ChangeKind.MODIFIED
    return roots


def _may_contain_claimed(root: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        if pattern_matches(pattern, root):
            return True
        if _is_below(static_prefix(pattern), root):
            return True
    return False


def _staging_target(staging_path: Path, path: str) -> Path:
    relative = posixpath.normpath(path.lstrip("/"))
    if relative.startswith("..") or posixpath.isabs(relative):
        raise ExtractionError(
            f"Refusing to extract {path}: path traversal detected",
            code="path_traversal",
        )
    target = staging_path / relative
    # Extracted symlinks must not redirect later members out of the staging area
    for parent in target.relative_to(staging_path).parents:
        if (staging_path / parent).is_symlink():
            raise ExtractionError(
                f"Refusing to extract {path}: {parent} is a symlink",
                code="path_traversal",
            )
    return target


def write_member(
    tar: tarfile.TarFile,
    member: tarfile.TarInfo,
    path: str,
    staging_path: Path,
) -> bool:
    """Write one archive member into a staging area.

    Returns:
        True if a file or symlink was written.
    """
    target = _staging_target(staging_path, path)
    if member.isdir():
        target.mkdir(parents=True, exist_ok=True)
        return False
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.is_symlink() or target.exists():
        target.unlink()
    if member.issym():
        os.symlink(member.linkname, target)
        return True
    if member.isfile():
        fileobj = tar.extractfile(member)
        if fileobj is None:
            return False
        with target.open("wb") as f:
            shutil.copyfileobj(fileobj, f)
        target.chmod(member.mode & 0o7777)
        return True
    logger.debug("Skipping special file %s", path)
    return False


def extract(
    client: EngineClient,
    container: str,
    file_map: dict[str, PackageWriter],
    excludes: Iterable[str] = (),
) -> ExtractionResult:
    """Copy the files a build changed into the owning packages.

    Args:
        client: Engine client.
        container: Finished build container.
        file_map: Ordered pattern -> writer map from build_file_map().
        excludes: Patterns that are never packaged.

    Returns:
        ExtractionResult listing the written files per package.
    """
    excludes = list(excludes)
    result = ExtractionResult()
    roots = {
        root: kind
        for root, kind in changed_roots(client.container_changes(container)).items()
        if _may_contain_claimed(root, file_map)
    }
    logger.debug("Extracting %d changed path(s) from %s", len(roots), container[:12])

    for root, kind in roots.items():
        parent = posixpath.dirname(root)
        try:
            with client.get_archive(container, root) as stream:
                with tarfile.open(fileobj=stream, mode="r|") as tar:
                    for member in tar:
                        path = posixpath.normpath(posixpath.join(parent, member.name))
                        if not _is_below(path, root):
                            logger.warning(
                                "Ignoring archive member %s outside %s", member.name, root
                            )
                            continue
                        # Content below a modified directory is unchanged base image
                        if kind == ChangeKind.MODIFIED and (path != root or member.isdir()):
                            continue
                        if is_excluded(path, excludes):
                            logger.debug("Excluded %s", path)
                            continue
                        writer = owner_for(path, file_map)
                        if writer is None:
                            if not member.isdir():
                                result.unclaimed.append(path)
                            continue
                        if write_member(tar, member, path, writer.staging_path):
                            result.files.setdefault(str(writer.name), []).append(path)
        except FileNotFoundInContainerError:
            logger.debug("%s disappeared from %s", root, container[:12])

    for name, files in result.files.items():
        logger.info("Package %s: %d file(s)", name, len(files))
    if result.unclaimed:
        logger.debug("Files not claimed by any package: %s", ", ".join(result.unclaimed))
    return result


__all__ = [
    "ExtractionError",
    "ExtractionResult",
    "IGNORED_PATHS",
    "build_file_map",
    "changed_roots",
    "extract",
    "is_excluded",
    "owner_for",
    "pattern_matches",
    "static_prefix",
    "write_member",
]
