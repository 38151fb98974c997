"""Build manifests for the source and build stages.

The source stage copies the recipe's inputs on top of the base image and
is cached under a tag derived from the cache key. The build stage starts
from that image, installs build dependencies and sets the build script as
the container command.

Both stages render into an ordered archive file map whose first entry is
the manifest, so the archive is deterministic for identical inputs.
"""

from __future__ import annotations

import json
import logging
import shlex

from pkgfry.engine.tar_stream import TarEntry, TarSource, TarStream
from pkgfry.errors import ConfigurationError
from pkgfry.recipe.recipe import Recipe
from pkgfry.recipe.source import BUILD_DIR
from pkgfry.types import Flavour, Variables

logger = logging.getLogger(__name__)

DOCKERFILE_NAME = "Dockerfile.pkgfry"
BUILD_SCRIPT_NAME = ".pkgfry-build.sh"
BUILD_SCRIPT_PATH = "/" + BUILD_SCRIPT_NAME


class SourceStage:
    """Manifest of the cached source image.

    Args:
        base_image: Content-addressed id of the base image.
        recipe: Recipe providing the source.
    """

    def __init__(self, base_image: str, recipe: Recipe) -> None:
        self.base_image = base_image
        self.recipe = recipe

    def dockerfile(self, entries: dict[str, TarSource]) -> str:
        lines = [
            f"FROM {self.base_image}",
            f"WORKDIR {BUILD_DIR}",
            *self.recipe.source.dockerfile_lines(entries),
        ]
        return "\n".join(lines) + "\n"

    def file_map(self) -> dict[str, TarSource]:
        """Return archive entries, manifest first.

        Inspecting the source emits its hints, so this also runs on a
        cache hit.
        """
        entries = self.recipe.source.file_map()
        return {DOCKERFILE_NAME: self.dockerfile(entries), **entries}

    def tar_stream(self) -> TarStream:
        return TarStream(self.file_map())


def install_command(flavour: Flavour | None, packages: list[str], update: bool) -> str | None:
    """Shell command installing build dependencies, None when there are none."""
    if not packages:
        return None
    names = " ".join(shlex.quote(p) for p in packages)
    if flavour is Flavour.DEBIAN:
        install = (
            "DEBIAN_FRONTEND=noninteractive apt-get install -y "
            f"--no-install-recommends {names}"
        )
        return f"apt-get update && {install}" if update else install
    if flavour is Flavour.REDHAT:
        return f"yum -y install {names}"
    raise ConfigurationError(
        "Cannot install build dependencies on an unknown distribution",
        code="unknown_flavour",
    )


class BuildStage:
    """Manifest of the image that runs the build steps.

    Args:
        source_image: Tag of the source stage image.
        recipe: Recipe providing steps, variables and build dependencies.
        variables: Detected image variables.
        update: Whether package lists are refreshed before installing.
    """

    def __init__(
        self,
        source_image: str,
        recipe: Recipe,
        variables: Variables,
        update: bool = False,
    ) -> None:
        self.source_image = source_image
        self.recipe = recipe
        self.variables = variables
        self.update = update

    def build_script(self) -> str:
        lines = ["#!/bin/sh", "set -e", f"cd {BUILD_DIR}"]
        total = len(self.recipe.steps)
        for index, step in enumerate(self.recipe.steps, start=1):
            lines.append(f"echo {shlex.quote(f'==> [{index}/{total}] {step.name}')}")
            lines.append(step.run.rstrip("\n"))
        return "\n".join(lines) + "\n"

    def dockerfile(self) -> str:
        lines = [f"FROM {self.source_image}", f"WORKDIR {BUILD_DIR}"]
        for key in sorted(self.recipe.variables):
            lines.append(f"ENV {key}={json.dumps(self.recipe.variables[key])}")
        command = install_command(
            self.variables.flavour, self.recipe.build_depends, self.update
        )
        if command:
            lines.append(f"RUN {command}")
        lines.append(f"COPY {BUILD_SCRIPT_NAME} {BUILD_SCRIPT_PATH}")
        lines.append(f'CMD ["/bin/sh", "-e", "{BUILD_SCRIPT_PATH}"]')
        return "\n".join(lines) + "\n"

    def file_map(self) -> dict[str, TarSource]:
        return {
            DOCKERFILE_NAME: self.dockerfile(),
            BUILD_SCRIPT_NAME: TarEntry(self.build_script(), mode=0o755),
        }

    def tar_stream(self) -> TarStream:
        return TarStream(self.file_map())


__all__ = [
    "BUILD_SCRIPT_NAME",
    "BuildStage",
    "DOCKERFILE_NAME",
    "SourceStage",
    "install_command",
]
