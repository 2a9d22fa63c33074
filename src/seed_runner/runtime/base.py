"""
Abstract capabilities consumed by the orchestrators.

The container runtime and the registry are external collaborators. The
orchestrators only see these interfaces, so tests substitute in-memory
fakes and production uses DockerRuntime / HttpRegistry.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence


@dataclass(frozen=True)
class ContainerOutcome:
    """Exit status and captured output of one container run."""
    exit_code: int
    output: str = ""


class ContainerRuntime(ABC):
    """
    Build/run/push primitives of a container engine.

    Implementations raise BuildFailed, PushFailed or Cancelled; a non-zero
    container exit is returned in ContainerOutcome, not raised.
    """

    @abstractmethod
    def build(
        self,
        context: str,
        dockerfile: str,
        tags: Sequence[str],
        cache_from: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Build an image.

        Returns:
            Image ID of the built image
        """
        pass

    @abstractmethod
    def run(
        self,
        image: str,
        env: Dict[str, str],
        mounts: Sequence[str],
        remove_on_exit: bool = False,
        command: Sequence[str] = (),
        extra_args: Sequence[str] = (),
        quiet: bool = False,
    ) -> ContainerOutcome:
        """
        Run a container to completion.

        Args:
            image: Image reference
            env: Environment variables for the container
            mounts: Volume specs in host:container:mode form
            remove_on_exit: Remove the container once it exits
            command: Arguments appended after the image name
            extra_args: Additional engine flags (resource limits)
            quiet: Do not pass the container's output through
        """
        pass

    @abstractmethod
    def push(self, ref: str) -> None:
        pass

    @abstractmethod
    def pull(self, ref: str) -> None:
        pass

    @abstractmethod
    def tag(self, source: str, target: str) -> None:
        pass

    @abstractmethod
    def image_label(self, image: str, label: str) -> Optional[str]:
        """Return a label value of a local image, or None if unset."""
        pass

    @abstractmethod
    def list_images(self, label: str) -> List[str]:
        """List local image references carrying a label."""
        pass

    def login(self, registry: str, username: str, password: str) -> None:
        """Authenticate against a registry (no-op unless overridden)."""
        return None


class RegistryClient(ABC):
    """Query and mutate tags in a remote image registry."""

    #: host[:port] used to qualify image references ("" for Docker Hub)
    host: str = ""

    @abstractmethod
    def tag_exists(self, repository: str, tag: str) -> bool:
        pass

    @abstractmethod
    def push(self, ref: str) -> None:
        pass

    @abstractmethod
    def delete(self, repository: str, tag: str) -> None:
        """Delete a tag. Raises ImageNotFound when it does not exist."""
        pass

    @abstractmethod
    def list(self, org: str = "") -> List[str]:
        """Repository names, limited to an organization when given."""
        pass

    def search(self, org: str = "", filter: str = "") -> List[str]:
        """Seed repositories whose name contains ``filter``."""
        return [r for r in self.list(org) if r.endswith("-seed") and filter in r]


def qualified_ref(host: str, org: str, image: str) -> str:
    """
    Join registry host, organization and image into one reference.

    Examples:
        >>> qualified_ref('localhost:5000', 'geoint', 'algo-1.0.0-seed:1.0.0')
        'localhost:5000/geoint/algo-1.0.0-seed:1.0.0'
        >>> qualified_ref('', '', 'algo-1.0.0-seed:1.0.0')
        'algo-1.0.0-seed:1.0.0'
    """
    return "/".join(part for part in (host, org, image) if part)
