"""Package assembly and output.

This module handles:
- Format specific default attributes
- Flagging files below /etc as config files
- Writing packages atomically into the output directory

A reader never observes a partially written package: packages are written
to ``<file>.tmp`` next to the final path and renamed into place.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from pkgfry.hints import hint
from pkgfry.recipe.recipe import CONFIG_EXPLICITLY_USED

if TYPE_CHECKING:
    from pkgfry.builds.packages import PackageWriter

logger = logging.getLogger(__name__)

# Staging directory whose regular files are configuration
CONFIG_DIR = "etc"

TEMP_SUFFIX = ".tmp"


def adjust_package_settings(writer: PackageWriter) -> None:
    """Apply default attributes for both package formats.

    The formats' own config file detection is disabled; config files are
    flagged by adjust_config_files() instead.
    """
    writer.attributes.setdefault("rpm_use_file_permissions", True)
    writer.attributes.setdefault("rpm_user", "root")
    writer.attributes.setdefault("rpm_group", "root")
    writer.attributes.setdefault("deb_no_default_config_files", True)
    writer.attributes.setdefault("deb_auto_config_files", False)


def adjust_config_files(writer: PackageWriter) -> list[str]:
    """Flag every regular file below /etc as config file.

    Skipped when the recipe listed config files itself.

    Returns:
        Paths that were added.
    """
    if writer.attributes.get(CONFIG_EXPLICITLY_USED):
        return []
    config_dir = writer.staging_path / CONFIG_DIR
    if not config_dir.is_dir():
        return []
    added = []
    for item in sorted(config_dir.rglob("*")):
        if item.is_symlink() or not item.is_file():
            continue
        path = "/" + item.relative_to(writer.staging_path).as_posix()
        if writer.add_config_file(path):
            added.append(path)
    if added:
        hint(
            "The following files were flagged as config files of %s: %s. "
            "List config_files in the recipe to choose them yourself",
            writer.name,
            ", ".join(added),
        )
    return added


def write_output(
    writer: PackageWriter,
    output_dir: Path,
    overwrite: bool = True,
) -> Path | None:
    """Write a package atomically.

    Args:
        writer: Assembled package writer.
        output_dir: Directory receiving the package.
        overwrite: Replace an existing package file.

    Returns:
        Path of the written package, or None when an existing file was kept.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / writer.filename()
    if path.exists() and not overwrite:
        logger.info("Not overwriting existing package %s", path)
        return None

    tmp_path = path.with_name(path.name + TEMP_SUFFIX)
    # A stale temporary from an interrupted run is not an error
    tmp_path.unlink(missing_ok=True)
    try:
        writer.output(tmp_path)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)
    logger.info("Wrote %s", path)
    return path


def assemble(writer: PackageWriter, output_dir: Path, overwrite: bool = True) -> Path | None:
    """Apply defaults and config file detection, then write the package."""
    adjust_package_settings(writer)
    adjust_config_files(writer)
    return write_output(writer, output_dir, overwrite=overwrite)


__all__ = [
    "adjust_config_files",
    "adjust_package_settings",
    "assemble",
    "write_output",
]
