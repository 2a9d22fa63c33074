"""
Image build orchestration.

A manifest is always validated before the container runtime is asked to
build anything. The built image is tagged {name}-{jobVersion}-seed:{packageVersion}
and carries the full manifest in the com.ngageoint.seed.manifest label, so
run/batch/publish can recover the manifest from the image alone.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..errors import ManifestNotFound
from ..manifest.model import Manifest, parse_manifest_text
from ..manifest.validation import ValidationReport, check_report, validate_manifest
from ..runtime.base import ContainerRuntime

logger = logging.getLogger(__name__)

MANIFEST_LABEL = "com.ngageoint.seed.manifest"


@dataclass(frozen=True)
class ImageRef:
    """A locally built (or pulled) seed image."""
    name: str
    image_id: str = ""

    @property
    def repository(self) -> str:
        return self.name.rsplit(':', 1)[0]

    @property
    def tag(self) -> str:
        return self.name.rsplit(':', 1)[1] if ':' in self.name else 'latest'

    def __str__(self) -> str:
        return self.name


def load_manifest_from_image(runtime: ContainerRuntime, image: str) -> Manifest:
    """Recover the manifest embedded in an image's labels."""
    label = runtime.image_label(image, MANIFEST_LABEL)
    if not label:
        raise ManifestNotFound(f"Image {image} has no {MANIFEST_LABEL} label; is it a seed image?")
    return parse_manifest_text(label, origin=f"label of {image}")


class BuildOrchestrator:
    """
    Validates manifests and drives image builds.

    Example:
        builder = BuildOrchestrator(DockerRuntime())
        manifest = load_manifest('algorithms/watermark')
        image = builder.build(manifest, 'algorithms/watermark')
        print(image.name)
    """

    def __init__(self, runtime: ContainerRuntime):
        self.runtime = runtime

    def validate(
        self,
        manifest: Manifest,
        warnings_as_errors: bool = False,
        schema_override: Optional[Union[str, Path]] = None,
    ) -> ValidationReport:
        """Validate, log warnings, and raise ValidationFailed on errors."""
        report = validate_manifest(manifest, schema_override)
        for warning in report.warnings:
            logger.warning("Manifest warning: %s", warning)
        return check_report(report, warnings_as_errors)

    def build(
        self,
        manifest: Manifest,
        build_context: Union[str, Path],
        dockerfile: Optional[Union[str, Path]] = None,
        cache_from: Optional[str] = None,
        warnings_as_errors: bool = False,
        schema_override: Optional[Union[str, Path]] = None,
    ) -> ImageRef:
        """
        Build a seed image from a manifest.

        Args:
            manifest: Parsed manifest
            build_context: Docker build context directory
            dockerfile: Dockerfile path (default: <build_context>/Dockerfile)
            cache_from: Image to use as a layer cache source
            warnings_as_errors: Treat validation warnings as failures
            schema_override: Schema file replacing the bundled schema

        Returns:
            ImageRef of the tagged image

        Raises:
            ValidationFailed: Manifest is invalid (nothing is built)
            BuildFailed: The runtime reported a failed build
        """
        self.validate(manifest, warnings_as_errors, schema_override)

        build_context = Path(build_context)
        dockerfile = Path(dockerfile) if dockerfile else build_context / "Dockerfile"
        if not dockerfile.is_file():
            raise FileNotFoundError(f"Dockerfile not found: {dockerfile}")

        image_name = manifest.image_name
        logger.info("Building %s from %s", image_name, build_context)

        image_id = self.runtime.build(
            context=str(build_context),
            dockerfile=str(dockerfile),
            tags=[image_name],
            cache_from=cache_from,
            labels={MANIFEST_LABEL: manifest.source},
        )
        return ImageRef(name=image_name, image_id=image_id)
