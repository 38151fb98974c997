"""Shared type definitions for pkgfry.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import asdict, dataclass
from enum import Enum, IntEnum
from typing import Any


class Flavour(str, Enum):
    """Distribution family of a base image; selects the package format."""

    DEBIAN = "debian"
    REDHAT = "redhat"


class UpdatePolicy(str, Enum):
    """Whether package lists are refreshed before installing build dependencies."""

    AUTO = "auto"
    NEVER = "never"
    ALWAYS = "always"


class StreamType(IntEnum):
    """Stream tag of an attach frame header."""

    STDOUT = 1
    STDERR = 2


class ChangeKind(IntEnum):
    """Kind of a filesystem change reported by the engine."""

    MODIFIED = 0
    ADDED = 1
    DELETED = 2


@dataclass(frozen=True)
class Variables:
    """Facts detected about the base image.

    Attributes:
        image: Image reference the facts were detected on.
        distribution: Lower-cased distribution id (debian, ubuntu, centos...).
        release: Distribution release/version string.
        flavour: Distribution family, None if unknown.
        codename: Release codename, if any.
        architecture: Engine architecture name (amd64, arm64...).
    """

    image: str
    distribution: str
    release: str
    flavour: Flavour | None = None
    codename: str | None = None
    architecture: str = "amd64"

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["flavour"] = self.flavour.value if self.flavour else None
        return data


__all__ = [
    "ChangeKind",
    "Flavour",
    "StreamType",
    "UpdatePolicy",
    "Variables",
]
