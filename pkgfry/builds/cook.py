"""Build orchestration.

This module provides the end-to-end ``cook`` flow:

1. Check the recipe file, detect the image and load the recipe
2. Resolve the package writer of the detected flavour and lint the recipe
3. Resolve the base image to its content-addressed id
4. Build (or reuse) the cached source image
5. Build the image that runs the build steps
6. Run the build in a container, streaming its output
7. Extract changed files into package staging areas
8. Assemble and write packages

Every stage records its result on a CookContext exactly once. Containers
and staging areas are released on every exit path; ``keep`` retains the
container for inspection.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

import httpx

from pkgfry.builds import cache_key
from pkgfry.builds.assembly import assemble
from pkgfry.builds.extraction import build_file_map, extract
from pkgfry.builds.packages import PackageWriter, writer_for_flavour
from pkgfry.config import get_settings
from pkgfry.detector import detect_variables
from pkgfry.dockerfile import DOCKERFILE_NAME, BuildStage, SourceStage
from pkgfry.engine.build_output import BuildOutputParser
from pkgfry.engine.demux import StreamDemultiplexer
from pkgfry.engine.inspector import inspect_image
from pkgfry.engine.streams import Tee
from pkgfry.errors import (
    BuildFailure,
    FileNotFoundInContainerError,
    LintError,
    RecipeNotFoundError,
)
from pkgfry.hints import hint
from pkgfry.recipe.io import load_recipe
from pkgfry.recipe.recipe import EXCLUDES_ATTRIBUTE, PackageDeclaration, Recipe
from pkgfry.types import Flavour, UpdatePolicy, Variables

if TYPE_CHECKING:
    from pkgfry.config import Settings
    from pkgfry.engine.client import EngineClient

logger = logging.getLogger(__name__)

APT_LISTS_DIR = "/var/lib/apt/lists"

# Entries of the apt lists directory that exist without any package list
APT_LISTS_SKELETON = {"lock", "partial", "auxfiles"}

WriterFactory = Callable[[Flavour | None], type[PackageWriter]]
PackagePairs = list[tuple[PackageDeclaration, PackageWriter]]


@dataclass
class CookOptions:
    """Options of a cook run.

    Attributes:
        keep: Keep the build container after the run.
        overwrite: Replace existing package files.
        update: Package list refresh policy.
        output_dir: Directory receiving packages (settings default if None).
        log_file: File additionally receiving build and container output.
    """

    keep: bool = False
    overwrite: bool = True
    update: UpdatePolicy = UpdatePolicy.AUTO
    output_dir: Path | None = None
    log_file: Path | None = None


@dataclass
class CookContext:
    """State of one cook run; each field records the result of one stage."""

    image: str
    recipe_path: Path
    options: CookOptions
    variables: Variables | None = None
    recipe: Recipe | None = None
    writer_class: type[PackageWriter] | None = None
    base_image_id: str | None = None
    cache_key: str | None = None
    cache_tag: str | None = None
    cache_hit: bool = False
    update: bool = False
    build_image: str | None = None
    container: str | None = None
    packages: list[Path] = field(default_factory=list)


class Cook:
    """Runs recipes against images.

    Args:
        client: Engine client.
        settings: Application settings.
        out: Sink for build progress and container stdout (default: stdout).
        err: Sink for container stderr (default: stderr).
        writer_factory: Resolves the writer class of a flavour.
    """

    def __init__(
        self,
        client: EngineClient,
        settings: Settings | None = None,
        out: BinaryIO | None = None,
        err: BinaryIO | None = None,
        writer_factory: WriterFactory = writer_for_flavour,
    ) -> None:
        self.client = client
        self.settings = settings or get_settings()
        self.out = out
        self.err = err
        self.writer_factory = writer_factory

    def run(
        self,
        image: str,
        recipe_path: Path,
        options: CookOptions | None = None,
    ) -> CookContext:
        """Cook a recipe on an image.

        Returns:
            The completed CookContext; ``packages`` lists written files.

        Raises:
            ConfigurationError: Missing recipe, invalid recipe, unknown flavour.
            LintError: The recipe has problems.
            EngineError: An engine operation failed.
            ProtocolError: An engine stream was malformed.
            BuildFailure: A build produced no image or the build script failed.
        """
        ctx = CookContext(
            image=image, recipe_path=recipe_path, options=options or CookOptions()
        )
        self.check_recipe_file(recipe_path)

        with ExitStack() as stack:
            out: BinaryIO = self.out if self.out is not None else sys.stdout.buffer
            err: BinaryIO = self.err if self.err is not None else sys.stderr.buffer
            if ctx.options.log_file is not None:
                log = stack.enter_context(ctx.options.log_file.open("ab"))
                out = Tee(out, log)  # type: ignore[assignment]
                err = Tee(err, log)  # type: ignore[assignment]

            variables = ctx.variables = self.detect(image)
            recipe = ctx.recipe = self.load(recipe_path, variables)
            writer_class = ctx.writer_class = self.writer_factory(variables.flavour)
            self.lint(recipe)
            base_image_id = ctx.base_image_id = self.client.image_id(image)
            logger.debug("Base image %s is %s", image, base_image_id)
            ctx.update = self.resolve_update(image, variables, ctx.options.update)

            ctx.cache_key = cache_key.compute(base_image_id, recipe)
            ctx.cache_tag = cache_key.cache_tag(ctx.cache_key, self.settings.cache_tag_prefix)
            ctx.cache_hit = self.source_stage(base_image_id, recipe, ctx.cache_tag, out)
            ctx.build_image = self.build_stage(
                ctx.cache_tag, recipe, variables, ctx.update, out
            )

            pairs = stack.enter_context(
                self.package_writers(recipe, variables, writer_class)
            )
            with self.container(ctx.build_image, keep=ctx.options.keep) as container:
                ctx.container = container
                self.run_container(container, out, err)
                self.extract(recipe, container, pairs)
            output_dir = ctx.options.output_dir or self.settings.output_dir
            ctx.packages = self.assemble(pairs, output_dir, ctx.options.overwrite)

        logger.info("Cooked %d package(s)", len(ctx.packages))
        return ctx

    # Preparation

    def check_recipe_file(self, recipe_path: Path) -> None:
        if not recipe_path.is_file():
            raise RecipeNotFoundError(str(recipe_path))

    def detect(self, image: str) -> Variables:
        variables = detect_variables(self.client, image)
        logger.info(
            "Detected %s %s (%s) on %s",
            variables.distribution,
            variables.release,
            variables.flavour.value if variables.flavour else "unknown flavour",
            image,
        )
        return variables

    def load(self, recipe_path: Path, variables: Variables) -> Recipe:
        return load_recipe(
            recipe_path,
            variables,
            cache_dir=self.settings.cache_dir,
            download_timeout=self.settings.download_timeout,
        )

    def lint(self, recipe: Recipe) -> None:
        problems = recipe.lint()
        if problems:
            for problem in problems:
                logger.error("%s", problem)
            raise LintError(problems)

    def resolve_update(
        self, image: str, variables: Variables, policy: UpdatePolicy
    ) -> bool:
        """Decide whether package lists are refreshed before installing."""
        if variables.flavour is not Flavour.DEBIAN:
            return False
        if policy is UpdatePolicy.NEVER:
            return False
        if policy is UpdatePolicy.ALWAYS:
            return True
        if self._apt_lists_populated(image):
            hint(
                "%s already contains package lists in %s. "
                "You could try to speed up builds with --update=never",
                image,
                APT_LISTS_DIR,
            )
        return True

    def _apt_lists_populated(self, image: str) -> bool:
        with inspect_image(self.client, image) as inspector:
            try:
                with inspector.read(APT_LISTS_DIR) as members:
                    for member in members:
                        parts = member.name.strip("/").split("/")
                        if len(parts) > 1 and parts[1] not in APT_LISTS_SKELETON:
                            return True
            except FileNotFoundInContainerError:
                return False
        return False

    # Images

    def _built_image(self, parser: BuildOutputParser, stage: str) -> str:
        if parser.errors:
            raise BuildFailure(
                f"Building the {stage} image failed: {parser.errors[-1].strip()}",
                code="image_build",
                details={"errors": list(parser.errors)},
            )
        return parser.image

    def source_stage(
        self, base_image_id: str, recipe: Recipe, tag: str, out: BinaryIO
    ) -> bool:
        """Build the source image unless it is cached.

        A cache hit still inspects the source so its hints are reported.

        Returns:
            True on a cache hit.
        """
        stage = SourceStage(base_image_id, recipe)

        if self.client.image_exists(tag):
            logger.info("Using cached source image %s", tag)
            stage.file_map()
            return True

        logger.info("Building source image %s", tag)
        with httpx.Client(follow_redirects=True) as http:
            recipe.source.prepare(http)
        parser = BuildOutputParser(out)
        self.client.build(stage.tar_stream(), DOCKERFILE_NAME, tag=tag, consumer=parser)
        self._built_image(parser, "source")
        return False

    def build_stage(
        self,
        source_tag: str,
        recipe: Recipe,
        variables: Variables,
        update: bool,
        out: BinaryIO,
    ) -> str:
        stage = BuildStage(source_tag, recipe, variables, update=update)
        parser = BuildOutputParser(out)
        self.client.build(stage.tar_stream(), DOCKERFILE_NAME, consumer=parser)
        build_image = self._built_image(parser, "build")
        logger.info("Build image is %s", build_image)
        return build_image

    # Packages and container

    @contextmanager
    def package_writers(
        self,
        recipe: Recipe,
        variables: Variables,
        writer_class: type[PackageWriter],
    ) -> Iterator[PackagePairs]:
        """Create one writer per declared package; staging is always removed."""
        pairs: PackagePairs = []
        try:
            for declaration in recipe.packages:
                writer = writer_class(tmp_dir=self.settings.tmp_dir)
                pairs.append((declaration, writer))
                writer.architecture = variables.architecture
                declaration.apply_output(writer)
            yield pairs
        finally:
            for _, writer in pairs:
                writer.cleanup_staging()

    @contextmanager
    def container(self, build_image: str, keep: bool = False) -> Iterator[str]:
        """Create the build container; it is removed on exit unless kept."""
        container = self.client.create_container(
            build_image,
            AttachStdout=True,
            AttachStderr=True,
            Tty=False,
        )
        try:
            yield container
        finally:
            if keep:
                logger.info("Keeping container %s", container[:12])
            else:
                self.client.remove_container(container)

    def run_container(self, container: str, out: BinaryIO, err: BinaryIO) -> None:
        """Start the container, stream its output and wait for it.

        Raises:
            BuildFailure: If the build script exits non-zero.
        """
        self.client.start_container(container)
        self.client.attach_container(container, StreamDemultiplexer(out, err))
        exit_code = self.client.wait_container(container)
        if exit_code != 0:
            raise BuildFailure(
                f"Build script failed with exit code {exit_code}",
                exit_code=exit_code,
                code="build_script",
                details={"container": container},
            )

    def extract(self, recipe: Recipe, container: str, pairs: PackagePairs) -> None:
        attributes: dict[str, list[str]] = {}
        recipe.apply_input(attributes)
        file_map = build_file_map(
            [
                (pattern, writer)
                for declaration, writer in pairs
                for pattern in declaration.files
            ]
        )
        extract(
            self.client,
            container,
            file_map,
            excludes=attributes.get(EXCLUDES_ATTRIBUTE, []),
        )

    def assemble(
        self, pairs: PackagePairs, output_dir: Path, overwrite: bool = True
    ) -> list[Path]:
        packages = []
        for _, writer in pairs:
            path = assemble(writer, output_dir, overwrite=overwrite)
            if path is not None:
                packages.append(path)
        return packages


def cook(
    client: EngineClient,
    image: str,
    recipe_path: Path,
    options: CookOptions | None = None,
    settings: Settings | None = None,
) -> CookContext:
    """Convenience wrapper running a single cook."""
    return Cook(client, settings=settings).run(image, recipe_path, options)


__all__ = [
    "Cook",
    "CookContext",
    "CookOptions",
    "cook",
]
