"""Recipe objects consumed by the build orchestrator.

A Recipe is what a recipe file turns into once it has been validated and
combined with the detected image variables. It exposes the build inputs
(source, steps, variables, build dependencies) and an ordered list of
package declarations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pkgfry.recipe.source import Source

if TYPE_CHECKING:
    from pkgfry.builds.packages import PackageWriter

logger = logging.getLogger(__name__)

# Attribute set on a writer when the recipe lists config files itself
CONFIG_EXPLICITLY_USED = "fry_config_explicitly_used"

# Writer attribute that collects exclude patterns
EXCLUDES_ATTRIBUTE = "excludes"


@dataclass(frozen=True)
class Step:
    """A named shell command run by the build script."""

    name: str
    run: str


@dataclass
class PackageDeclaration:
    """An output package of a recipe.

    Attributes:
        name: Package name.
        files: Absolute glob patterns of files the package claims.
        version: Package version.
        iteration: Package iteration (release).
        depends: Runtime dependencies.
        config_files: Explicit config files, or None to auto-detect.
        exclude: Patterns never packaged.
        metadata: Remaining writer metadata (description, maintainer...).
    """

    name: str
    files: list[str]
    version: str
    iteration: str = "1"
    depends: list[str] = field(default_factory=list)
    config_files: list[str] | None = None
    exclude: list[str] = field(default_factory=list)
    architecture: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def apply_input(self, attributes: dict[str, Any]) -> None:
        """Contribute extraction settings (exclude patterns)."""
        excludes = attributes.setdefault(EXCLUDES_ATTRIBUTE, [])
        for pattern in self.exclude:
            if pattern not in excludes:
                excludes.append(pattern)

    def apply_output(self, writer: PackageWriter) -> None:
        """Copy package metadata onto a writer."""
        writer.name = self.name
        writer.version = self.version
        writer.iteration = self.iteration
        if self.architecture:
            writer.architecture = self.architecture
        writer.depends = list(self.depends)
        for key, value in self.metadata.items():
            setattr(writer, key, value)
        if self.config_files is not None:
            for path in self.config_files:
                writer.add_config_file(path)
            writer.attributes[CONFIG_EXPLICITLY_USED] = True

    def lint(self) -> list[str]:
        problems = []
        if not self.files:
            problems.append(f"Package {self.name} declares no files")
        for pattern in self.files:
            if not pattern.startswith("/"):
                problems.append(
                    f"File pattern {pattern!r} of package {self.name} is not absolute"
                )
        for pattern in self.exclude:
            if not pattern.startswith("/"):
                problems.append(
                    f"Exclude pattern {pattern!r} of package {self.name} is not absolute"
                )
        return problems


@dataclass
class Recipe:
    """A loaded recipe.

    Attributes:
        name: Recipe name.
        version: Version of the packaged software.
        source: Source shipped into the source stage.
        steps: Build steps in order.
        variables: Environment of the build steps.
        build_depends: Packages installed before the build steps run.
        exclude: Patterns excluded from every package.
        packages: Ordered package declarations.
    """

    name: str
    version: str
    source: Source = field(default_factory=Source)
    steps: list[Step] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)
    build_depends: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    packages: list[PackageDeclaration] = field(default_factory=list)

    def apply_input(self, attributes: dict[str, Any]) -> None:
        """Collect extraction settings of the recipe and all its packages."""
        excludes = attributes.setdefault(EXCLUDES_ATTRIBUTE, [])
        for pattern in self.exclude:
            if pattern not in excludes:
                excludes.append(pattern)
        for package in self.packages:
            package.apply_input(attributes)

    def lint(self) -> list[str]:
        """Return human readable problems; empty when the recipe is fine."""
        problems: list[str] = []
        if not self.steps:
            problems.append("Recipe declares no build steps")
        if not self.packages:
            problems.append("Recipe declares no packages")
        seen: set[str] = set()
        for package in self.packages:
            if package.name in seen:
                problems.append(f"Package {package.name} is declared more than once")
            seen.add(package.name)
            problems.extend(package.lint())
        for pattern in self.exclude:
            if not pattern.startswith("/"):
                problems.append(f"Exclude pattern {pattern!r} is not absolute")
        problems.extend(self.source.lint())
        return problems


__all__ = [
    "CONFIG_EXPLICITLY_USED",
    "EXCLUDES_ATTRIBUTE",
    "PackageDeclaration",
    "Recipe",
    "Step",
]
