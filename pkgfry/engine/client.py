"""HTTP client for the container engine API.

This module handles:
- Connecting over a unix socket or TCP (httpx transports)
- Image inspection and streaming image builds
- Container lifecycle (create, start, attach, wait, remove)
- Reading files and change lists from container filesystems

Streaming endpoints take an explicit ``consumer`` callable that receives
the open httpx.Response, so stream parsers stay independent of transport
internals.
"""

from __future__ import annotations

import logging
import posixpath
import tarfile
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import httpx

from pkgfry.engine.streams import IteratorReader
from pkgfry.errors import (
    ConfigurationError,
    EngineError,
    FileNotFoundInContainerError,
    ImageNotFoundError,
)

if TYPE_CHECKING:
    from pkgfry.config import Settings

logger = logging.getLogger(__name__)

ResponseConsumer = Callable[[httpx.Response], None]

UNIX_SOCKET_BASE_URL = "http://docker"
DEFAULT_API_VERSION = "1.41"

# Symlinks followed by read_content before giving up
MAX_SYMLINK_DEPTH = 8


def resolve_docker_host(docker_host: str) -> tuple[str, httpx.BaseTransport | None]:
    """Translate a DOCKER_HOST style endpoint into base URL and transport.

    Args:
        docker_host: ``unix:///path``, ``tcp://host:port`` or an http(s) URL.

    Returns:
        Tuple of (base_url, transport or None for the default transport).
    """
    if docker_host.startswith("unix://"):
        socket_path = docker_host[len("unix://") :]
        return UNIX_SOCKET_BASE_URL, httpx.HTTPTransport(uds=socket_path)
    if docker_host.startswith("tcp://"):
        return "http://" + docker_host[len("tcp://") :], None
    if docker_host.startswith(("http://", "https://")):
        return docker_host, None
    raise ConfigurationError(f"Unsupported docker host: {docker_host}")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (ValueError, httpx.ResponseNotRead):
        return response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


class EngineClient:
    """Thin synchronous client for the engine's HTTP API.

    Args:
        base_url: Engine URL without API version.
        transport: Optional httpx transport (unix socket, mocks).
        api_version: API version used as URL prefix.
        timeout: Read timeout in seconds; None waits forever.
    """

    def __init__(
        self,
        base_url: str,
        transport: httpx.BaseTransport | None = None,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self._http = httpx.Client(
            base_url=self.base_url,
            transport=transport,
            timeout=httpx.Timeout(timeout),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineClient:
        """Create a client for the engine configured in settings."""
        base_url, transport = resolve_docker_host(settings.docker_host)
        return cls(
            base_url,
            transport=transport,
            api_version=settings.api_version,
            timeout=settings.engine_timeout,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> EngineClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def url(self, *parts: str) -> str:
        """Build a versioned API path from parts."""
        return "/v{}/{}".format(self.api_version, "/".join(p.strip("/") for p in parts))

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except httpx.TimeoutException as e:
            raise EngineError(
                f"Timeout during {operation}",
                operation=operation,
                code="timeout",
            ) from e
        except httpx.RequestError as e:
            raise EngineError(
                f"Transport error during {operation}: {e}",
                operation=operation,
                code="transport_error",
            ) from e

    def _check(
        self,
        response: httpx.Response,
        operation: str,
        expects: Iterable[int],
    ) -> None:
        if response.status_code in expects:
            return
        if not response.is_closed:
            response.read()
        raise EngineError(
            f"{operation} failed: {response.status_code} {_error_message(response)}",
            operation=operation,
            code="http_error",
            status_code=response.status_code,
        )

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        expects: Iterable[int] = (200,),
        **kwargs: Any,
    ) -> httpx.Response:
        with self._translate_errors(operation):
            response = self._http.request(method, path, **kwargs)
        self._check(response, operation, expects)
        return response

    def _stream(
        self,
        method: str,
        path: str,
        operation: str,
        consumer: ResponseConsumer | None,
        expects: Iterable[int] = (200,),
        **kwargs: Any,
    ) -> None:
        with self._translate_errors(operation):
            with self._http.stream(method, path, **kwargs) as response:
                self._check(response, operation, expects)
                if consumer is not None:
                    consumer(response)
                else:
                    for _ in response.iter_bytes():
                        pass

    # Images

    def image_json(self, image: str) -> dict[str, Any]:
        """Inspect an image.

        Raises:
            ImageNotFoundError: If the engine does not know the image.
        """
        operation = "image_inspect"
        with self._translate_errors(operation):
            response = self._http.get(self.url("images", image, "json"))
        if response.status_code == 404:
            raise ImageNotFoundError(image, operation=operation)
        self._check(response, operation, (200,))
        return response.json()

    def image_id(self, image: str) -> str:
        """Return the content-addressed id of an image."""
        body = self.image_json(image)
        return body.get("Id") or body["id"]

    def image_exists(self, image: str) -> bool:
        try:
            self.image_json(image)
        except ImageNotFoundError:
            return False
        return True

    def build(
        self,
        context: Iterable[bytes],
        dockerfile: str,
        tag: str | None = None,
        consumer: ResponseConsumer | None = None,
    ) -> None:
        """Build an image from a streamed tar build context.

        Args:
            context: Tar archive chunks, uploaded as they are produced.
            dockerfile: Archive member holding the build manifest.
            tag: Optional tag for the resulting image.
            consumer: Receives the streaming progress response.
        """
        params: dict[str, str] = {"rm": "1", "forcerm": "1", "dockerfile": dockerfile}
        if tag:
            params["t"] = tag
        logger.debug("Starting image build (tag=%s)", tag)
        self._stream(
            "POST",
            self.url("build"),
            "image_build",
            consumer,
            params=params,
            headers={"Content-Type": "application/x-tar"},
            content=iter(context),
        )

    # Containers

    def create_container(self, image: str, **config: Any) -> str:
        """Create a container and return its id."""
        body = {"Image": image, **config}
        response = self._request(
            "POST",
            self.url("containers", "create"),
            "container_create",
            expects=(201,),
            json=body,
        )
        container = response.json()["Id"]
        logger.debug("Created container %s from %s", container[:12], image)
        return container

    def start_container(self, container: str) -> None:
        self._request(
            "POST",
            self.url("containers", container, "start"),
            "container_start",
            expects=(204, 304),
        )

    def attach_container(self, container: str, consumer: ResponseConsumer) -> None:
        """Attach to a container's combined output until it closes."""
        self._stream(
            "POST",
            self.url("containers", container, "attach"),
            "container_attach",
            consumer,
            params={"stream": "1", "stdout": "1", "stderr": "1", "logs": "1"},
        )

    def wait_container(self, container: str) -> int:
        """Block until the container exits and return its exit code."""
        response = self._request(
            "POST",
            self.url("containers", container, "wait"),
            "container_wait",
        )
        return int(response.json()["StatusCode"])

    def remove_container(self, container: str) -> None:
        """Remove a container; an already removed container is fine."""
        response = self._request(
            "DELETE",
            self.url("containers", container),
            "container_remove",
            expects=(204, 404),
            params={"force": "1", "v": "1"},
        )
        if response.status_code == 404:
            logger.debug("Container %s was already gone", container[:12])
        else:
            logger.debug("Removed container %s", container[:12])

    def container_changes(self, container: str) -> list[dict[str, Any]]:
        """List filesystem changes of a container against its image."""
        response = self._request(
            "GET",
            self.url("containers", container, "changes"),
            "container_changes",
        )
        return response.json() or []

    @contextmanager
    def get_archive(self, container: str, path: str) -> Iterator[IteratorReader]:
        """Stream a tar archive of ``path`` from a container filesystem.

        Yields:
            Readable byte stream with the tar archive.

        Raises:
            FileNotFoundInContainerError: If path does not exist.
        """
        operation = "get_archive"
        with self._translate_errors(operation):
            with self._http.stream(
                "GET",
                self.url("containers", container, "archive"),
                params={"path": path},
            ) as response:
                if response.status_code == 404:
                    raise FileNotFoundInContainerError(container, path)
                self._check(response, operation, (200,))
                yield IteratorReader(response.iter_bytes())

    def read_content(self, container: str, path: str) -> str:
        """Read a text file from a container, following symlinks."""
        for _ in range(MAX_SYMLINK_DEPTH):
            with self.get_archive(container, path) as stream:
                with tarfile.open(fileobj=stream, mode="r|") as tar:
                    member = tar.next()
                    if member is None:
                        raise FileNotFoundInContainerError(container, path)
                    if member.issym():
                        path = posixpath.normpath(
                            posixpath.join(posixpath.dirname(path), member.linkname)
                        )
                        continue
                    fileobj = tar.extractfile(member)
                    if fileobj is None:
                        raise FileNotFoundInContainerError(container, path)
                    return fileobj.read().decode("utf-8", errors="replace")
        raise EngineError(
            f"Too many levels of symbolic links reading {path}",
            operation="read_content",
            code="symlink_loop",
        )


__all__ = [
    "DEFAULT_API_VERSION",
    "EngineClient",
    "ResponseConsumer",
    "resolve_docker_host",
]
