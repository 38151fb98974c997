"""Package writers.

This module handles:
- Per-flavour package writers (Debian, Redhat)
- Staging directory lifecycle
- Composing and running the fpm command that serializes a package

The detected flavour is resolved to a writer class once per run.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, ClassVar

from pkgfry.errors import BuildFailure, ConfigurationError
from pkgfry.types import Flavour

logger = logging.getLogger(__name__)

# Serializer executable
FPM = "fpm"

# Timeout for a single package serialization (seconds)
OUTPUT_TIMEOUT = 1800


class PackageWriter:
    """Collects the content and metadata of one output package.

    Args:
        tmp_dir: Parent directory of the staging area (system default if None).

    Attributes:
        staging_path: Directory holding the package's files.
        config_files: Ordered, duplicate-free absolute config file paths.
        attributes: Format specific flags.
    """

    flavour: ClassVar[Flavour]
    fpm_type: ClassVar[str]
    architecture_names: ClassVar[dict[str, str]] = {}

    def __init__(self, tmp_dir: Path | None = None) -> None:
        self.name: str | None = None
        self.version = "0.0.0"
        self.iteration = "1"
        self.architecture = "all"
        self.description: str | None = None
        self.maintainer: str | None = None
        self.vendor: str | None = None
        self.license: str | None = None
        self.homepage: str | None = None
        self.depends: list[str] = []
        self.config_files: list[str] = []
        self.attributes: dict[str, Any] = {}
        if tmp_dir is not None:
            tmp_dir.mkdir(parents=True, exist_ok=True)
        self.staging_path = Path(
            tempfile.mkdtemp(prefix="pkgfry_staging_", dir=tmp_dir)
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    @property
    def package_architecture(self) -> str:
        return self.architecture_names.get(self.architecture, self.architecture)

    def add_config_file(self, path: str) -> bool:
        """Flag a path as config file. Returns False if it already was."""
        path = "/" + path.lstrip("/")
        if path in self.config_files:
            return False
        self.config_files.append(path)
        return True

    def filename(self) -> str:
        raise NotImplementedError

    def fpm_options(self) -> list[str]:
        """Format specific command line options."""
        return []

    def compose_command(self, path: Path) -> list[str]:
        """Compose the fpm command writing this package to ``path``.

        Returns:
            Command as list of strings suitable for subprocess.
        """
        if not self.name:
            raise ConfigurationError("Package has no name", code="package_name")
        cmd = [
            FPM,
            "-s", "dir",
            "-t", self.fpm_type,
            "-n", self.name,
            "-v", self.version,
            "--iteration", self.iteration,
            "-a", self.package_architecture,
            "-p", str(path),
            "-C", str(self.staging_path),
            "--force",
        ]  # fmt: skip
        for option, value in (
            ("--description", self.description),
            ("--maintainer", self.maintainer),
            ("--vendor", self.vendor),
            ("--license", self.license),
            ("--url", self.homepage),
        ):
            if value:
                cmd.extend([option, value])
        for dependency in self.depends:
            cmd.extend(["-d", dependency])
        for config_file in self.config_files:
            cmd.extend(["--config-files", config_file])
        cmd.extend(self.fpm_options())
        cmd.append(".")
        return cmd

    def output(self, path: Path) -> None:
        """Serialize the staged content to a package file.

        Raises:
            BuildFailure: If fpm fails or cannot be executed.
        """
        cmd = self.compose_command(path)
        logger.debug("Executing: %s", shlex.join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=OUTPUT_TIMEOUT,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise BuildFailure(
                f"Writing {path.name} timed out after {OUTPUT_TIMEOUT} seconds",
                code="package_timeout",
            ) from e
        except OSError as e:
            raise BuildFailure(
                f"Failed to execute {FPM}: {e}", code="package_output"
            ) from e
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip()
            raise BuildFailure(
                f"Writing {path.name} failed: {message}",
                exit_code=result.returncode,
                code="package_output",
            )

    def cleanup_staging(self) -> None:
        """Remove the staging area. Safe to call more than once."""
        if self.staging_path.exists():
            shutil.rmtree(self.staging_path, ignore_errors=True)
            logger.debug("Removed staging area %s", self.staging_path)


class DebianWriter(PackageWriter):
    """Writes .deb packages."""

    flavour = Flavour.DEBIAN
    fpm_type = "deb"
    architecture_names = {"x86_64": "amd64", "aarch64": "arm64"}

    def filename(self) -> str:
        return f"{self.name}_{self.version}-{self.iteration}_{self.package_architecture}.deb"

    def fpm_options(self) -> list[str]:
        options = []
        if self.attributes.get("deb_no_default_config_files"):
            options.append("--deb-no-default-config-files")
        if self.attributes.get("deb_auto_config_files") is False:
            options.append("--no-deb-auto-config-files")
        return options


class RedhatWriter(PackageWriter):
    """Writes .rpm packages."""

    flavour = Flavour.REDHAT
    fpm_type = "rpm"
    architecture_names = {"amd64": "x86_64", "arm64": "aarch64", "all": "noarch"}

    def filename(self) -> str:
        return f"{self.name}-{self.version}-{self.iteration}.{self.package_architecture}.rpm"

    def fpm_options(self) -> list[str]:
        options = []
        if self.attributes.get("rpm_use_file_permissions"):
            options.append("--rpm-use-file-permissions")
        if self.attributes.get("rpm_user"):
            options.extend(["--rpm-user", self.attributes["rpm_user"]])
        if self.attributes.get("rpm_group"):
            options.extend(["--rpm-group", self.attributes["rpm_group"]])
        return options


WRITERS: dict[Flavour, type[PackageWriter]] = {
    Flavour.DEBIAN: DebianWriter,
    Flavour.REDHAT: RedhatWriter,
}


def writer_for_flavour(flavour: Flavour | None) -> type[PackageWriter]:
    """Resolve the writer class of a flavour.

    Raises:
        ConfigurationError: If the flavour is unknown.
    """
    if flavour is None or flavour not in WRITERS:
        raise ConfigurationError(
            "Cannot auto-detect package type.", code="unknown_flavour"
        )
    return WRITERS[flavour]


__all__ = [
    "DebianWriter",
    "PackageWriter",
    "RedhatWriter",
    "WRITERS",
    "writer_for_flavour",
]
