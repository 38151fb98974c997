"""Read files of an image through a throw-away container."""

from __future__ import annotations

import logging
import tarfile
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from pkgfry.errors import EngineError, ImageNotFoundError

if TYPE_CHECKING:
    from pkgfry.engine.client import EngineClient

logger = logging.getLogger(__name__)


class ContainerInspector:
    """File access to one container's filesystem."""

    def __init__(self, client: EngineClient, container: str) -> None:
        self.client = client
        self.container = container

    def read_content(self, path: str) -> str:
        return self.client.read_content(self.container, path)

    @contextmanager
    def read(self, path: str) -> Iterator[Iterator[tarfile.TarInfo]]:
        """List the archive members below ``path`` (the path itself first)."""
        with self.client.get_archive(self.container, path) as stream:
            with tarfile.open(fileobj=stream, mode="r|") as tar:
                yield iter(tar)


@contextmanager
def inspect_image(client: EngineClient, image: str) -> Iterator[ContainerInspector]:
    """Create a stopped container from ``image`` for file inspection.

    The container is removed on exit.

    Raises:
        ImageNotFoundError: If the image does not exist.
    """
    try:
        container = client.create_container(image, Cmd=["true"])
    except EngineError as e:
        if e.status_code == 404:
            raise ImageNotFoundError(image, operation="container_create") from e
        raise
    try:
        yield ContainerInspector(client, container)
    finally:
        client.remove_container(container)


__all__ = ["ContainerInspector", "inspect_image"]
