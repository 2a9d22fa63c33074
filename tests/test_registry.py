"""Tests for the HTTP registry client, using httpx.MockTransport."""

import httpx
import pytest

from conftest import FakeRuntime
from seed_runner.errors import ImageNotFound, RegistryError
from seed_runner.runtime.base import qualified_ref
from seed_runner.runtime.registry import HttpRegistry


def _registry(handler, url="localhost:5000", **kwargs):
    return HttpRegistry(url, transport=httpx.MockTransport(handler), **kwargs)


class TestTagExists:
    """HEAD /v2/<repo>/manifests/<tag>."""

    def test_exists(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200)

        assert _registry(handler).tag_exists("geoint/algo-1.0.0-seed", "1.0.0")
        assert seen == [("HEAD", "/v2/geoint/algo-1.0.0-seed/manifests/1.0.0")]

    def test_missing(self):
        assert not _registry(lambda request: httpx.Response(404)).tag_exists("algo-1.0.0-seed", "9.9.9")

    def test_server_error(self):
        with pytest.raises(RegistryError):
            _registry(lambda request: httpx.Response(500)).tag_exists("algo-1.0.0-seed", "1.0.0")

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RegistryError):
            _registry(handler).tag_exists("algo-1.0.0-seed", "1.0.0")


class TestDelete:
    """Deletion resolves the tag to a digest first."""

    def test_delete_by_digest(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            if request.method == "HEAD":
                return httpx.Response(200, headers={"Docker-Content-Digest": "sha256:abc"})
            return httpx.Response(202)

        _registry(handler).delete("geoint/algo-1.0.0-seed", "1.0.0")
        assert seen == [
            ("HEAD", "/v2/geoint/algo-1.0.0-seed/manifests/1.0.0"),
            ("DELETE", "/v2/geoint/algo-1.0.0-seed/manifests/sha256:abc"),
        ]

    def test_delete_missing_tag(self):
        with pytest.raises(ImageNotFound):
            _registry(lambda request: httpx.Response(404)).delete("algo-1.0.0-seed", "1.0.0")


class TestList:
    """Catalog listing and search."""

    def test_catalog_pagination(self):
        def handler(request):
            if "last" in request.url.params:
                return httpx.Response(200, json={"repositories": ["geoint/zeta-1.0.0-seed"]})
            return httpx.Response(
                200,
                json={"repositories": ["geoint/algo-1.0.0-seed", "other/base"]},
                headers={"Link": '</v2/_catalog?n=1000&last=other%2Fbase>; rel="next"'},
            )

        registry = _registry(handler)
        assert registry.list("geoint") == ["geoint/algo-1.0.0-seed", "geoint/zeta-1.0.0-seed"]
        assert registry.search("geoint", "zeta") == ["geoint/zeta-1.0.0-seed"]

    def test_docker_hub_list(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"results": [{"name": "algo-1.0.0-seed"}], "next": None})

        registry = _registry(handler, url="")
        assert registry.is_docker_hub
        assert registry.host == ""
        assert registry.list("geoint") == ["geoint/algo-1.0.0-seed"]
        assert seen[0].startswith("https://hub.docker.com/v2/repositories/geoint/")

    def test_docker_hub_needs_org(self):
        with pytest.raises(RegistryError):
            _registry(lambda request: httpx.Response(200), url="docker.io").list()


class TestDockerHubWrites:
    """Docker Hub deletes authenticate with a JWT."""

    def test_delete_uses_jwt(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, request.headers.get("Authorization")))
            if request.url.path == "/v2/users/login/":
                return httpx.Response(200, json={"token": "abc"})
            return httpx.Response(204)

        registry = _registry(handler, url="", username="user", password="pass")
        registry.delete("geoint/algo-1.0.0-seed", "1.0.0")
        assert seen[-1] == ("DELETE", "/v2/repositories/geoint/algo-1.0.0-seed/tags/1.0.0/", "JWT abc")

    def test_delete_without_credentials(self):
        with pytest.raises(RegistryError):
            _registry(lambda request: httpx.Response(204), url="").delete("geoint/algo-1.0.0-seed", "1.0.0")


def test_push_logs_in_once():
    runtime = FakeRuntime()
    registry = _registry(lambda request: httpx.Response(200), runtime=runtime, username="u", password="p")
    registry.push("localhost:5000/algo-1.0.0-seed:1.0.0")
    registry.push("localhost:5000/algo-1.0.0-seed:1.0.1")
    assert runtime.logins == [("localhost:5000", "u", "p")]
    assert len(runtime.pushed) == 2


def test_qualified_ref():
    assert qualified_ref("localhost:5000", "geoint", "algo-1.0.0-seed:1.0.0") == \
        "localhost:5000/geoint/algo-1.0.0-seed:1.0.0"
    assert qualified_ref("", "", "algo-1.0.0-seed:1.0.0") == "algo-1.0.0-seed:1.0.0"
