"""Tests for dockerfile module."""

import io
import tarfile

import pytest

from pkgfry.dockerfile import (
    BUILD_SCRIPT_NAME,
    DOCKERFILE_NAME,
    BuildStage,
    SourceStage,
    install_command,
)
from pkgfry.errors import ConfigurationError
from pkgfry.recipe import DirSource, Recipe, Step
from pkgfry.types import Flavour, Variables


@pytest.fixture
def variables():
    """Variables of a detected debian image."""
    return Variables(image="debian:12", distribution="debian", release="12", flavour=Flavour.DEBIAN)


@pytest.fixture
def recipe(tmp_path):
    """Recipe with a small source directory."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "hello.sh").write_text("echo hello\n")
    return Recipe(
        name="hello",
        version="1.0",
        source=DirSource(src),
        steps=[Step("compile", "make"), Step("install", "make install\n")],
        variables={"PREFIX": "/usr", "CFLAGS": "-O2 -g"},
        build_depends=["build-essential", "libssl-dev"],
    )


class TestSourceStage:
    """Tests for SourceStage."""

    def test_file_map_manifest_first(self, recipe):
        """The manifest is the first archive entry."""
        entries = SourceStage("sha256:base", recipe).file_map()
        assert list(entries) == [DOCKERFILE_NAME, "source/hello.sh"]
        assert entries[DOCKERFILE_NAME] == (
            "FROM sha256:base\nWORKDIR /tmp/build\nCOPY source/ /tmp/build/\n"
        )

    def test_without_source(self):
        """A recipe without source only sets up the build directory."""
        stage = SourceStage("sha256:base", Recipe(name="hello", version="1"))
        assert stage.file_map() == {DOCKERFILE_NAME: "FROM sha256:base\nWORKDIR /tmp/build\n"}

    def test_tar_stream(self, recipe):
        """The tar stream holds the manifest and sources."""
        data = b"".join(SourceStage("sha256:base", recipe).tar_stream())
        with tarfile.open(fileobj=io.BytesIO(data)) as tar:
            assert tar.getnames() == [DOCKERFILE_NAME, "source/hello.sh"]
            assert tar.extractfile("source/hello.sh").read() == b"echo hello\n"


class TestInstallCommand:
    """Tests for install_command function."""

    def test_no_packages(self):
        """Nothing to install gives no command."""
        assert install_command(Flavour.DEBIAN, [], update=True) is None

    def test_debian(self):
        """Debian uses apt-get without recommends."""
        assert install_command(Flavour.DEBIAN, ["make", "gcc"], update=False) == (
            "DEBIAN_FRONTEND=noninteractive apt-get install -y "
            "--no-install-recommends make gcc"
        )

    def test_debian_update(self):
        """Update refreshes package lists first."""
        command = install_command(Flavour.DEBIAN, ["make"], update=True)
        assert command.startswith("apt-get update && ")

    def test_redhat(self):
        """Redhat uses yum."""
        assert install_command(Flavour.REDHAT, ["make"], update=False) == "yum -y install make"

    def test_quoting(self):
        """Package names are shell quoted."""
        assert "'foo (>= 1)'" in install_command(Flavour.REDHAT, ["foo (>= 1)"], update=False)

    def test_unknown_flavour(self):
        """Unknown distributions cannot install build dependencies."""
        with pytest.raises(ConfigurationError) as exc_info:
            install_command(None, ["make"], update=False)
        assert exc_info.value.code == "unknown_flavour"


class TestBuildStage:
    """Tests for BuildStage."""

    def test_build_script(self, recipe, variables):
        """Steps run in order with progress lines."""
        script = BuildStage("pkgfry:abc", recipe, variables).build_script()
        assert script == (
            "#!/bin/sh\n"
            "set -e\n"
            "cd /tmp/build\n"
            "echo '==> [1/2] compile'\n"
            "make\n"
            "echo '==> [2/2] install'\n"
            "make install\n"
        )

    def test_dockerfile(self, recipe, variables):
        """Manifest sets env, installs dependencies and runs the script."""
        dockerfile = BuildStage("pkgfry:abc", recipe, variables, update=True).dockerfile()
        lines = dockerfile.splitlines()
        assert lines[0] == "FROM pkgfry:abc"
        assert lines[1] == "WORKDIR /tmp/build"
        assert lines[2] == 'ENV CFLAGS="-O2 -g"'
        assert lines[3] == 'ENV PREFIX="/usr"'
        assert lines[4].startswith("RUN apt-get update && ")
        assert lines[-2] == f"COPY {BUILD_SCRIPT_NAME} /{BUILD_SCRIPT_NAME}"
        assert lines[-1] == f'CMD ["/bin/sh", "-e", "/{BUILD_SCRIPT_NAME}"]'

    def test_no_build_depends(self, variables):
        """Without build dependencies there is no RUN line."""
        recipe = Recipe(name="hello", version="1", steps=[Step("s", "true")])
        dockerfile = BuildStage("pkgfry:abc", recipe, variables).dockerfile()
        assert "RUN" not in dockerfile

    def test_tar_stream(self, recipe, variables):
        """The build script is executable in the archive."""
        data = b"".join(BuildStage("pkgfry:abc", recipe, variables).tar_stream())
        with tarfile.open(fileobj=io.BytesIO(data)) as tar:
            assert tar.getnames() == [DOCKERFILE_NAME, BUILD_SCRIPT_NAME]
            assert tar.getmember(BUILD_SCRIPT_NAME).mode == 0o755
