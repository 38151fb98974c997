"""Tests for shared types and errors."""

import dataclasses

import pytest

from pkgfry.errors import (
    BuildFailure,
    ConfigurationError,
    EngineError,
    ImageNotFoundError,
    PkgfryError,
    ProtocolError,
    RecipeNotFoundError,
    ShortReadError,
)
from pkgfry.types import ChangeKind, Flavour, StreamType, UpdatePolicy, Variables


class TestEnums:
    """Test enum definitions."""

    def test_flavour_values(self) -> None:
        """Flavour should have expected values."""
        assert Flavour.DEBIAN.value == "debian"
        assert Flavour.REDHAT.value == "redhat"

    def test_update_policy_values(self) -> None:
        """UpdatePolicy should parse CLI values."""
        assert UpdatePolicy("auto") is UpdatePolicy.AUTO
        assert UpdatePolicy("never") is UpdatePolicy.NEVER
        assert UpdatePolicy("always") is UpdatePolicy.ALWAYS

    def test_wire_values(self) -> None:
        """Stream tags and change kinds match the engine's numbers."""
        assert StreamType.STDOUT == 1
        assert StreamType.STDERR == 2
        assert ChangeKind.MODIFIED == 0
        assert ChangeKind.ADDED == 1
        assert ChangeKind.DELETED == 2


class TestVariables:
    """Test Variables dataclass."""

    def test_immutable(self) -> None:
        """Variables cannot be changed after detection."""
        variables = Variables(image="debian:12", distribution="debian", release="12")
        with pytest.raises(dataclasses.FrozenInstanceError):
            variables.release = "13"  # type: ignore[misc]

    def test_as_dict(self) -> None:
        """as_dict should give plain values."""
        variables = Variables(
            image="centos:7",
            distribution="centos",
            release="7.9",
            flavour=Flavour.REDHAT,
        )
        assert variables.as_dict() == {
            "image": "centos:7",
            "distribution": "centos",
            "release": "7.9",
            "flavour": "redhat",
            "codename": None,
            "architecture": "amd64",
        }


class TestErrors:
    """Test the error taxonomy."""

    def test_default_codes(self) -> None:
        """Errors carry their default code."""
        assert PkgfryError("x").code == "error"
        assert ConfigurationError("x").code == "configuration"
        assert ProtocolError("x").code == "protocol"
        assert BuildFailure("x").code == "build_failed"

    def test_explicit_code(self) -> None:
        """An explicit code overrides the default."""
        assert ConfigurationError("x", code="unknown_flavour").code == "unknown_flavour"

    def test_hierarchy(self) -> None:
        """Specialized errors are catchable by their family."""
        assert isinstance(RecipeNotFoundError("r.yaml"), ConfigurationError)
        assert isinstance(ShortReadError(8, 3), ProtocolError)
        assert isinstance(ImageNotFoundError("x"), EngineError)

    def test_details(self) -> None:
        """Structured details are attached."""
        assert ShortReadError(8, 3).details == {"expected": 8, "received": 3}
        assert BuildFailure("x", exit_code=2).details == {"exit_code": 2}
        assert EngineError("x", operation="build", status_code=500).details == {
            "operation": "build",
            "status_code": 500,
        }
