"""Tests for engine/client.py module.

Uses respx to mock the engine's HTTP API.
"""

import io
import json
import tarfile

import httpx
import pytest
import respx

from pkgfry.config import Settings
from pkgfry.engine.build_output import BuildOutputParser
from pkgfry.engine.client import EngineClient, resolve_docker_host
from pkgfry.errors import (
    ConfigurationError,
    EngineError,
    FileNotFoundInContainerError,
    ImageNotFoundError,
)

BASE_URL = "http://localhost:2375"
API = BASE_URL + "/v1.41"


def tar_bytes(*members: tarfile.TarInfo, contents: dict[str, bytes] | None = None) -> bytes:
    contents = contents or {}
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for info in members:
            data = contents.get(info.name)
            if data is not None:
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
            else:
                tar.addfile(info)
    return buf.getvalue()


def file_info(name: str) -> tarfile.TarInfo:
    return tarfile.TarInfo(name)


def symlink_info(name: str, target: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    return info


@pytest.fixture
def client():
    """Engine client against a mocked TCP endpoint."""
    with EngineClient(BASE_URL) as c:
        yield c


class TestResolveDockerHost:
    """Tests for resolve_docker_host function."""

    def test_unix_socket(self):
        """unix:// hosts should use a socket transport."""
        base_url, transport = resolve_docker_host("unix:///var/run/docker.sock")
        assert base_url == "http://docker"
        assert isinstance(transport, httpx.HTTPTransport)

    def test_tcp(self):
        """tcp:// hosts map to plain http."""
        assert resolve_docker_host("tcp://10.0.0.1:2375") == ("http://10.0.0.1:2375", None)

    def test_http(self):
        """http(s) URLs pass through."""
        assert resolve_docker_host("https://engine:2376") == ("https://engine:2376", None)

    def test_unsupported(self):
        """Other schemes are a configuration error."""
        with pytest.raises(ConfigurationError):
            resolve_docker_host("ssh://user@host")


class TestEngineClient:
    """Tests for EngineClient."""

    def test_url(self, client):
        """Paths should carry the API version."""
        assert client.url("containers", "abc", "start") == "/v1.41/containers/abc/start"

    def test_from_settings(self):
        """Client should use the configured host and API version."""
        settings = Settings(docker_host="tcp://engine:2375", api_version="1.43")
        with EngineClient.from_settings(settings) as c:
            assert c.base_url == "http://engine:2375"
            assert c.url("build") == "/v1.43/build"

    @respx.mock
    def test_image_json(self, client):
        """Should return the inspect document."""
        respx.get(f"{API}/images/debian:12/json").mock(
            return_value=httpx.Response(200, json={"Id": "sha256:abc", "Architecture": "amd64"})
        )
        assert client.image_json("debian:12")["Architecture"] == "amd64"
        assert client.image_id("debian:12") == "sha256:abc"
        assert client.image_exists("debian:12") is True

    @respx.mock
    def test_image_not_found(self, client):
        """A 404 should raise ImageNotFoundError."""
        respx.get(f"{API}/images/nope/json").mock(
            return_value=httpx.Response(404, json={"message": "No such image: nope"})
        )
        with pytest.raises(ImageNotFoundError) as exc_info:
            client.image_json("nope")
        assert exc_info.value.status_code == 404
        assert 'Image "nope" not found' in exc_info.value.message
        assert client.image_exists("nope") is False

    @respx.mock
    def test_server_error(self, client):
        """Unexpected statuses should raise EngineError with the message."""
        respx.post(f"{API}/containers/create").mock(
            return_value=httpx.Response(500, json={"message": "disk full"})
        )
        with pytest.raises(EngineError) as exc_info:
            client.create_container("debian:12")
        assert exc_info.value.status_code == 500
        assert "disk full" in exc_info.value.message

    @respx.mock
    def test_transport_error(self, client):
        """Connection failures should raise EngineError."""
        respx.post(f"{API}/containers/abc/start").mock(
            side_effect=httpx.ConnectError("refused")
        )
        with pytest.raises(EngineError) as exc_info:
            client.start_container("abc")
        assert exc_info.value.code == "transport_error"

    @respx.mock
    def test_timeout(self, client):
        """Timeouts should raise EngineError with code timeout."""
        respx.post(f"{API}/containers/abc/wait").mock(
            side_effect=httpx.ReadTimeout("slow")
        )
        with pytest.raises(EngineError) as exc_info:
            client.wait_container("abc")
        assert exc_info.value.code == "timeout"

    @respx.mock
    def test_container_lifecycle(self, client):
        """Create, start, wait and remove should hit the right endpoints."""
        create = respx.post(f"{API}/containers/create").mock(
            return_value=httpx.Response(201, json={"Id": "c0ffee" * 10})
        )
        start = respx.post(f"{API}/containers/{'c0ffee' * 10}/start").mock(
            return_value=httpx.Response(204)
        )
        wait = respx.post(f"{API}/containers/{'c0ffee' * 10}/wait").mock(
            return_value=httpx.Response(200, json={"StatusCode": 3})
        )
        remove = respx.delete(f"{API}/containers/{'c0ffee' * 10}").mock(
            return_value=httpx.Response(204)
        )

        container = client.create_container("debian:12", Cmd=["true"])
        client.start_container(container)
        assert client.wait_container(container) == 3
        client.remove_container(container)

        assert container == "c0ffee" * 10
        assert json.loads(create.calls.last.request.content) == {
            "Image": "debian:12",
            "Cmd": ["true"],
        }
        assert start.called and wait.called
        assert remove.calls.last.request.url.params["force"] == "1"

    @respx.mock
    def test_remove_missing_container(self, client):
        """Removing a container that is gone is not an error."""
        respx.delete(f"{API}/containers/gone").mock(return_value=httpx.Response(404))
        client.remove_container("gone")

    @respx.mock
    def test_attach_streams_to_consumer(self, client):
        """The consumer should receive the attach response."""
        route = respx.post(f"{API}/containers/abc/attach").mock(
            return_value=httpx.Response(200, content=b"raw-output")
        )
        received = []
        client.attach_container("abc", lambda r: received.append(b"".join(r.iter_bytes())))
        assert received == [b"raw-output"]
        params = route.calls.last.request.url.params
        assert params["stream"] == "1"
        assert params["stdout"] == "1"
        assert params["stderr"] == "1"

    @respx.mock
    def test_build_uploads_context(self, client):
        """Build should upload the context and stream progress."""
        uploaded = []

        def handler(request):
            uploaded.append(request.read())
            body = json.dumps({"stream": "Successfully built 0123456789ab\n"})
            return httpx.Response(200, content=body.encode())

        route = respx.post(f"{API}/build").mock(side_effect=handler)
        parser = BuildOutputParser()
        client.build(
            [b"chunk-1", b"chunk-2"],
            dockerfile="Dockerfile.pkgfry",
            tag="pkgfry:abc",
            consumer=parser,
        )
        assert parser.image == "0123456789ab"
        assert uploaded == [b"chunk-1chunk-2"]
        request = route.calls.last.request
        assert request.headers["Content-Type"] == "application/x-tar"
        assert request.url.params["dockerfile"] == "Dockerfile.pkgfry"
        assert request.url.params["t"] == "pkgfry:abc"

    @respx.mock
    def test_build_without_tag(self, client):
        """Untagged builds should not send t."""
        route = respx.post(f"{API}/build").mock(return_value=httpx.Response(200))
        client.build([b""], dockerfile="Dockerfile.pkgfry")
        assert "t" not in route.calls.last.request.url.params

    @respx.mock
    def test_container_changes(self, client):
        """Changes should be returned as a list; null means none."""
        respx.get(f"{API}/containers/abc/changes").mock(
            return_value=httpx.Response(200, json=[{"Path": "/usr", "Kind": 0}])
        )
        respx.get(f"{API}/containers/empty/changes").mock(
            return_value=httpx.Response(200, json=None)
        )
        assert client.container_changes("abc") == [{"Path": "/usr", "Kind": 0}]
        assert client.container_changes("empty") == []

    @respx.mock
    def test_get_archive(self, client):
        """Archive should be readable as a tar stream."""
        data = tar_bytes(file_info("hello"), contents={"hello": b"world"})
        respx.get(f"{API}/containers/abc/archive", params={"path": "/hello"}).mock(
            return_value=httpx.Response(200, content=data)
        )
        with client.get_archive("abc", "/hello") as stream:
            with tarfile.open(fileobj=stream, mode="r|") as tar:
                member = tar.next()
                assert member.name == "hello"
                assert tar.extractfile(member).read() == b"world"

    @respx.mock
    def test_get_archive_missing(self, client):
        """A 404 should raise FileNotFoundInContainerError."""
        respx.get(f"{API}/containers/abc/archive").mock(return_value=httpx.Response(404))
        with pytest.raises(FileNotFoundInContainerError):
            with client.get_archive("abc", "/missing"):
                pass

    @respx.mock
    def test_read_content(self, client):
        """Should return the text of a single file."""
        data = tar_bytes(file_info("os-release"), contents={"os-release": b"ID=debian\n"})
        respx.get(f"{API}/containers/abc/archive").mock(
            return_value=httpx.Response(200, content=data)
        )
        assert client.read_content("abc", "/etc/os-release") == "ID=debian\n"

    @respx.mock
    def test_read_content_follows_symlinks(self, client):
        """Symlinks should be resolved relative to their directory."""
        link = tar_bytes(symlink_info("os-release", "../usr/lib/os-release"))
        target = tar_bytes(file_info("os-release"), contents={"os-release": b"ID=fedora\n"})
        respx.get(
            f"{API}/containers/abc/archive", params={"path": "/etc/os-release"}
        ).mock(return_value=httpx.Response(200, content=link))
        respx.get(
            f"{API}/containers/abc/archive", params={"path": "/usr/lib/os-release"}
        ).mock(return_value=httpx.Response(200, content=target))
        assert client.read_content("abc", "/etc/os-release") == "ID=fedora\n"

    @respx.mock
    def test_read_content_symlink_loop(self, client):
        """Endless symlinks should raise EngineError."""
        link = tar_bytes(symlink_info("loop", "loop"))
        respx.get(f"{API}/containers/abc/archive").mock(
            return_value=httpx.Response(200, content=link)
        )
        with pytest.raises(EngineError) as exc_info:
            client.read_content("abc", "/loop")
        assert exc_info.value.code == "symlink_loop"
