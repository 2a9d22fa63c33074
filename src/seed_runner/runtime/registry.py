"""
Docker registry client over HTTP.

Private registries are queried through the Registry HTTP API v2; Docker
Hub (empty registry, docker.io, index.docker.io) through the Hub
repositories API, since Hub does not expose /v2/_catalog. Pushes go through
the container runtime, which owns the image layers.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ImageNotFound, RegistryError
from .base import ContainerRuntime, RegistryClient

logger = logging.getLogger(__name__)

DOCKER_HUB_NAMES = ('', 'docker.io', 'index.docker.io', 'registry-1.docker.io', 'hub.docker.com')
DOCKER_HUB_API = "https://hub.docker.com"

MANIFEST_ACCEPT = ", ".join([
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
])


def _strip_scheme(url: str) -> str:
    for prefix in ('https://', 'http://'):
        if url.startswith(prefix):
            url = url[len(prefix):]
    return url.rstrip('/')


class HttpRegistry(RegistryClient):
    """
    RegistryClient for a v2 registry or Docker Hub.

    Example:
        registry = HttpRegistry('localhost:5000', runtime=DockerRuntime())
        if not registry.tag_exists('geoint/algo-1.0.0-seed', '1.0.0'):
            registry.push('localhost:5000/geoint/algo-1.0.0-seed:1.0.0')
    """

    def __init__(
        self,
        url: str = "",
        runtime: Optional[ContainerRuntime] = None,
        username: str = "",
        password: str = "",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.is_docker_hub = _strip_scheme(url) in DOCKER_HUB_NAMES
        self.host = "" if self.is_docker_hub else _strip_scheme(url)
        self.runtime = runtime
        self.username = username
        self.password = password
        self._logged_in = False
        self._hub_token: Optional[str] = None

        if self.is_docker_hub:
            base_url = DOCKER_HUB_API
        elif url.startswith(('http://', 'https://')):
            base_url = url.rstrip('/')
        else:
            base_url = f"https://{self.host}"

        auth = (username, password) if username and password and not self.is_docker_hub else None
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            auth=auth,
            transport=transport,
            follow_redirects=True,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> 'HttpRegistry':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # =========================================================================
    # HTTP helpers
    # =========================================================================

    def _request(self, method: str, path: str, op: str, **kwargs: Any) -> httpx.Response:
        """Send a request; transport failures become RegistryError."""
        started = time.perf_counter()
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.error("registry %s failed after %sms: %s", op, duration_ms, exc)
            raise RegistryError(f"Registry request {op} failed: {exc}")
        logger.debug("registry %s %s -> %s", method, path, response.status_code)
        return response

    def _raise_for_status(self, response: httpx.Response, op: str) -> None:
        if response.status_code >= 400:
            raise RegistryError(f"Registry request {op} returned HTTP {response.status_code}")

    def _hub_headers(self) -> Dict[str, str]:
        """JWT header for Docker Hub write operations."""
        if self._hub_token is None:
            if not (self.username and self.password):
                raise RegistryError("Docker Hub operation requires a username and password")
            response = self._request(
                'POST', '/v2/users/login/', op='hub.login',
                json={'username': self.username, 'password': self.password},
            )
            self._raise_for_status(response, 'hub.login')
            self._hub_token = response.json().get('token')
        return {'Authorization': f"JWT {self._hub_token}"}

    def _paginate(self, path: str, op: str, key: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        items: List[Any] = []
        next_url: Optional[str] = path
        while next_url:
            response = self._request('GET', next_url, op=op, params=params)
            self._raise_for_status(response, op)
            payload = response.json()
            items.extend(payload.get(key) or [])
            # Hub puts the next page in the body, v2 registries in a Link header
            next_url = payload.get('next') or response.links.get('next', {}).get('url')
            params = None
        return items

    # =========================================================================
    # RegistryClient
    # =========================================================================

    def tag_exists(self, repository: str, tag: str) -> bool:
        if self.is_docker_hub:
            response = self._request('GET', f"/v2/repositories/{repository}/tags/{tag}", op='hub.tag')
        else:
            response = self._request(
                'HEAD', f"/v2/{repository}/manifests/{tag}", op='manifest.head',
                headers={'Accept': MANIFEST_ACCEPT},
            )
        if response.status_code == 404:
            return False
        self._raise_for_status(response, 'tag_exists')
        return True

    def push(self, ref: str) -> None:
        if self.runtime is None:
            raise RegistryError("No container runtime configured for push")
        if self.username and not self._logged_in:
            self.runtime.login(self.host, self.username, self.password)
            self._logged_in = True
        self.runtime.push(ref)

    def delete(self, repository: str, tag: str) -> None:
        if self.is_docker_hub:
            response = self._request(
                'DELETE', f"/v2/repositories/{repository}/tags/{tag}/", op='hub.delete',
                headers=self._hub_headers(),
            )
            if response.status_code == 404:
                raise ImageNotFound(f"Tag {repository}:{tag} not found on Docker Hub")
            self._raise_for_status(response, 'hub.delete')
            return

        head = self._request(
            'HEAD', f"/v2/{repository}/manifests/{tag}", op='manifest.head',
            headers={'Accept': MANIFEST_ACCEPT},
        )
        if head.status_code == 404:
            raise ImageNotFound(f"Tag {repository}:{tag} not found in registry {self.host}")
        self._raise_for_status(head, 'manifest.head')

        digest = head.headers.get('Docker-Content-Digest')
        if not digest:
            raise RegistryError(f"Registry did not return a digest for {repository}:{tag}")

        response = self._request('DELETE', f"/v2/{repository}/manifests/{digest}", op='manifest.delete')
        if response.status_code == 404:
            raise ImageNotFound(f"Tag {repository}:{tag} not found in registry {self.host}")
        self._raise_for_status(response, 'manifest.delete')

    def list(self, org: str = "") -> List[str]:
        if self.is_docker_hub:
            if not org:
                raise RegistryError("Docker Hub repositories can only be listed by organization")
            results = self._paginate(
                f"/v2/repositories/{org}/", op='hub.list', key='results', params={'page_size': 100},
            )
            return sorted(f"{org}/{r['name']}" for r in results)

        repositories = self._paginate('/v2/_catalog', op='catalog', key='repositories', params={'n': 1000})
        if org:
            repositories = [r for r in repositories if r.startswith(f"{org}/")]
        return sorted(repositories)
