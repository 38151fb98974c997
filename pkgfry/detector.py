"""Operating system detection for base images.

This module handles:
- Reading release files from a container filesystem
- Deriving distribution, release, codename and flavour
- Running detection against an image via a throw-away container
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Protocol

from pkgfry.engine.inspector import inspect_image
from pkgfry.errors import FileNotFoundInContainerError
from pkgfry.types import Flavour, Variables

if TYPE_CHECKING:
    from pkgfry.engine.client import EngineClient

logger = logging.getLogger(__name__)

DEBIAN_DISTRIBUTIONS = {"debian", "ubuntu"}
REDHAT_DISTRIBUTIONS = {"centos", "redhat", "fedora", "rocky", "almalinux", "rhel"}

DEBIAN_CODENAMES = {
    "7": "wheezy",
    "8": "jessie",
    "9": "stretch",
    "10": "buster",
    "11": "bullseye",
    "12": "bookworm",
    "13": "trixie",
}

REDHAT_RELEASE_PATTERN = re.compile(r"^(.+?)\s+(?:Linux\s+)?release\s+([\d.]+)", re.I)


def parse_key_values(content: str) -> dict[str, str]:
    """Parse KEY=value lines (lsb-release, os-release), ignoring noise."""
    values: dict[str, str] = {}
    for line in content.splitlines():
        key, sep, value = line.partition("=")
        if not sep or not key.strip().isidentifier():
            continue
        values[key.strip()] = value.strip().strip("\"'")
    return values


class ContainerDetector:
    """Detect the operating system inside a container.

    Attributes:
        distribution: Lower-cased distribution id.
        version: Release string.
        codename: Release codename, if known.
        flavour: Distribution family, if known.
    """

    def __init__(self, client: EngineClient, container: str) -> None:
        self.client = client
        self.container = container
        self.distribution: str | None = None
        self.version: str | None = None
        self.codename: str | None = None
        self.flavour: str | None = None
        self._seen: set[str] = set()

    def _read(self, path: str) -> str | None:
        try:
            content = self.client.read_content(self.container, path)
        except FileNotFoundInContainerError:
            return None
        self._seen.add(path)
        return content

    def detect(self) -> bool:
        """Run detection; returns True when a distribution was found."""
        found = (
            self._detect_lsb_release()
            or self._detect_debian_version()
            or self._detect_redhat_release()
            or self._detect_os_release()
        )
        if found:
            self.flavour = self._detect_flavour()
            logger.debug(
                "Detected %s %s (flavour=%s)",
                self.distribution,
                self.version,
                self.flavour,
            )
        return found

    def _detect_lsb_release(self) -> bool:
        content = self._read("/etc/lsb-release")
        if content is None:
            return False
        values = parse_key_values(content)
        if "DISTRIB_ID" not in values:
            return False
        self.distribution = values["DISTRIB_ID"].lower()
        self.version = values.get("DISTRIB_RELEASE")
        self.codename = values.get("DISTRIB_CODENAME") or None
        return True

    def _detect_debian_version(self) -> bool:
        content = self._read("/etc/debian_version")
        if content is None:
            return False
        self.distribution = "debian"
        self.version = content.strip()
        self.codename = DEBIAN_CODENAMES.get(self.version.split(".")[0])
        return True

    def _detect_redhat_release(self) -> bool:
        content = self._read("/etc/redhat-release")
        if content is None:
            return False
        match = REDHAT_RELEASE_PATTERN.match(content.strip())
        if not match:
            logger.debug("Unrecognized /etc/redhat-release: %r", content)
            return False
        name = match.group(1).lower()
        self.distribution = "redhat" if "red hat" in name else name.split()[0]
        self.version = match.group(2)
        return True

    def _detect_os_release(self) -> bool:
        content = self._read("/etc/os-release")
        if content is None:
            return False
        values = parse_key_values(content)
        if "ID" not in values:
            return False
        self.distribution = values["ID"].lower()
        self.version = values.get("VERSION_ID")
        self.codename = values.get("VERSION_CODENAME") or None
        return True

    def _detect_flavour(self) -> str | None:
        if self.distribution in DEBIAN_DISTRIBUTIONS or "/etc/debian_version" in self._seen:
            return Flavour.DEBIAN.value
        if (
            self.distribution in REDHAT_DISTRIBUTIONS
            or "/etc/redhat-release" in self._seen
        ):
            return Flavour.REDHAT.value
        return None


class DetectorFactory(Protocol):
    def __call__(self, client: EngineClient, container: str) -> ContainerDetector: ...


class ImageDetector:
    """Detect the operating system of an image.

    Creates a container from the image, delegates to a container detector
    and removes the container again.
    """

    def __init__(
        self,
        client: EngineClient,
        image: str,
        factory: DetectorFactory = ContainerDetector,
    ) -> None:
        self.client = client
        self.image = image
        self.factory = factory
        self.distribution: str | None = None
        self.version: str | None = None
        self.codename: str | None = None
        self.flavour: str | None = None

    def detect(self) -> bool:
        """Run detection.

        Raises:
            ImageNotFoundError: If the image does not exist.
        """
        with inspect_image(self.client, self.image) as inspector:
            detector = self.factory(self.client, inspector.container)
            found = detector.detect()
            self.distribution = detector.distribution
            self.version = detector.version
            self.codename = detector.codename
            self.flavour = detector.flavour
        return found


def detect_variables(client: EngineClient, image: str) -> Variables:
    """Detect the variables of an image.

    Args:
        client: Engine client.
        image: Image reference.

    Returns:
        Immutable Variables; unknown values are reported as "unknown".

    Raises:
        ImageNotFoundError: If the image does not exist.
    """
    image_info = client.image_json(image)
    detector = ImageDetector(client, image)
    if not detector.detect():
        logger.warning("Could not detect the distribution of %s", image)
    return Variables(
        image=image,
        distribution=detector.distribution or "unknown",
        release=detector.version or "unknown",
        flavour=Flavour(detector.flavour) if detector.flavour else None,
        codename=detector.codename,
        architecture=image_info.get("Architecture") or "amd64",
    )


__all__ = [
    "ContainerDetector",
    "ImageDetector",
    "detect_variables",
    "parse_key_values",
]
