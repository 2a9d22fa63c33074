"""
Version bumping and registry publishing.

Two independent version axes exist per manifest: packageVersion (the
packaging of the image) and jobVersion (the algorithm itself). A publish
applies at most one bump per axis, persists the bumped manifest, rebuilds,
and pushes - unless the registry already holds the computed tag, in which
case it stops with VersionConflict unless forced.

Usage:
    publisher = VersionPublisher(DockerRuntime(), HttpRegistry('localhost:5000'))
    spec = BumpSpec.from_flags(pp=True)
    result = publisher.publish(manifest, manifest_path, 'algorithms/watermark', spec)
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from ..errors import InvalidBumpSpec, VersionConflict
from ..manifest.model import Manifest, write_manifest
from ..runtime.base import ContainerRuntime, RegistryClient, qualified_ref
from .build import MANIFEST_LABEL, BuildOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BumpSpec:
    """At most one bump level ('major', 'minor', 'patch') per version axis."""
    package: Optional[str] = None
    job: Optional[str] = None

    @classmethod
    def from_flags(
        cls,
        P: bool = False,
        pm: bool = False,
        pp: bool = False,
        J: bool = False,
        jm: bool = False,
        jp: bool = False,
    ) -> 'BumpSpec':
        """
        Build a BumpSpec from the -P/-pm/-pp and -J/-jm/-jp flags.

        Raises:
            InvalidBumpSpec: If more than one flag is set on the same axis
        """
        return cls(
            package=cls._axis('package', P, pm, pp),
            job=cls._axis('job', J, jm, jp),
        )

    @staticmethod
    def _axis(axis: str, major: bool, minor: bool, patch: bool) -> Optional[str]:
        chosen = [level for level, flag in (('major', major), ('minor', minor), ('patch', patch)) if flag]
        if len(chosen) > 1:
            raise InvalidBumpSpec(
                f"Only one {axis} version bump may be requested at a time",
                details=[f"requested: {', '.join(chosen)}"],
            )
        return chosen[0] if chosen else None

    @property
    def is_empty(self) -> bool:
        return self.package is None and self.job is None


def apply_bump(manifest: Manifest, spec: BumpSpec) -> Manifest:
    """Return the manifest with both axes bumped; the input is untouched."""
    if spec.is_empty:
        return manifest
    return manifest.with_versions(
        package_version=manifest.package_version.bump(spec.package),
        job_version=manifest.job_version.bump(spec.job),
    )


@dataclass(frozen=True)
class PublishResult:
    image: str
    remote_ref: str
    package_version: str
    job_version: str
    overwritten: bool = False
    manifest_path: Optional[Path] = None


class VersionPublisher:
    """
    Publishes seed images to a registry with tag deconfliction.

    The publisher is the only component that writes a manifest back to disk.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        registry: RegistryClient,
        builder: Optional[BuildOrchestrator] = None,
    ):
        self.runtime = runtime
        self.registry = registry
        self.builder = builder or BuildOrchestrator(runtime)

    def publish(
        self,
        manifest: Manifest,
        manifest_path: Union[str, Path],
        build_context: Union[str, Path],
        bump: BumpSpec = BumpSpec(),
        org: str = "",
        force: bool = False,
        dockerfile: Optional[Union[str, Path]] = None,
        cache_from: Optional[str] = None,
        rebuild: bool = True,
    ) -> PublishResult:
        """
        Bump, persist, rebuild and push a seed image.

        Args:
            manifest: Current manifest
            manifest_path: File the bumped manifest is written to
            build_context: Docker build context directory
            bump: Version bumps to apply
            org: Registry organization/namespace
            force: Overwrite an existing tag instead of failing
            dockerfile: Dockerfile path (default: <build_context>/Dockerfile)
            cache_from: Build cache source image
            rebuild: Rebuild even when no bump was requested. A bump always
                rebuilds since the image name changes.

        Returns:
            PublishResult

        Raises:
            VersionConflict: Tag already in the registry and force is False
            BuildFailed, PushFailed
        """
        bumped = apply_bump(manifest, bump)
        path = Path(manifest_path)

        if not bump.is_empty:
            logger.info(
                "Bumping %s: package %s -> %s, job %s -> %s",
                manifest.name, manifest.package_version, bumped.package_version,
                manifest.job_version, bumped.job_version,
            )
            write_manifest(bumped, path)

        if rebuild or not bump.is_empty:
            self.builder.build(bumped, build_context, dockerfile=dockerfile, cache_from=cache_from)

        repository = "/".join(part for part in (org, bumped.repository) if part)
        tag = str(bumped.package_version)
        remote_ref = qualified_ref(self.registry.host, org, bumped.image_name)

        exists = self.registry.tag_exists(repository, tag)
        if exists and not force:
            raise VersionConflict(
                f"{remote_ref} already exists in the registry",
                details=[
                    "bump the version (-P/-pm/-pp for the package, -J/-jm/-jp for the job)",
                    "or pass --force to overwrite the existing tag",
                ],
            )
        if exists:
            logger.warning("Overwriting existing tag %s", remote_ref)

        if remote_ref != bumped.image_name:
            self.runtime.tag(bumped.image_name, remote_ref)
        self.registry.push(remote_ref)
        logger.info("Published %s", remote_ref)

        return PublishResult(
            image=bumped.image_name,
            remote_ref=remote_ref,
            package_version=str(bumped.package_version),
            job_version=str(bumped.job_version),
            overwritten=exists,
            manifest_path=path if not bump.is_empty else None,
        )

    def _registry_path(self, image: str, org: str) -> str:
        host = self.registry.host
        if host and image.startswith(host + "/"):
            image = image[len(host) + 1:]
        if org and not image.startswith(org + "/"):
            image = f"{org}/{image}"
        return image

    def unpublish(self, image: str, org: str = "") -> str:
        """
        Delete an image tag from the registry.

        Returns:
            The repository:tag that was removed

        Raises:
            ImageNotFound: Tag is not in the registry
        """
        path = self._registry_path(image, org)
        repository, _, tag = path.rpartition(':')
        if not repository or '/' in tag:
            repository, tag = path, 'latest'
        self.registry.delete(repository, tag)
        logger.info("Removed %s:%s", repository, tag)
        return f"{repository}:{tag}"

    def pull(self, image: str, org: str = "") -> str:
        """Pull an image from the registry and tag it with its local name."""
        remote_ref = qualified_ref(self.registry.host, org, image)
        self.runtime.pull(remote_ref)
        if remote_ref != image:
            self.runtime.tag(remote_ref, image)
        return image

    def search(self, org: str = "", filter: str = "") -> List[str]:
        return self.registry.search(org, filter)


def list_local(runtime: ContainerRuntime) -> List[str]:
    """Local images that carry an embedded seed manifest."""
    return runtime.list_images(MANIFEST_LABEL)
