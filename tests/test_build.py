"""Tests for the build orchestrator."""

import json

import pytest

from conftest import FakeRuntime, manifest_document
from seed_runner.errors import ManifestNotFound, ValidationFailed
from seed_runner.manifest.model import Manifest
from seed_runner.run.build import MANIFEST_LABEL, BuildOrchestrator, ImageRef, load_manifest_from_image


class TestBuild:
    """Tests for BuildOrchestrator.build."""

    def test_tags_and_labels(self, manifest, manifest_dir, runtime):
        image = BuildOrchestrator(runtime).build(manifest, manifest_dir)

        assert image == ImageRef(name="algo-1.0.0-seed:1.0.0", image_id="sha256:fake")
        build = runtime.builds[0]
        assert build["tags"] == ["algo-1.0.0-seed:1.0.0"]
        assert build["dockerfile"] == str(manifest_dir / "Dockerfile")
        assert json.loads(build["labels"][MANIFEST_LABEL])["job"]["name"] == "algo"

    def test_cache_from_forwarded(self, manifest, manifest_dir, runtime):
        BuildOrchestrator(runtime).build(manifest, manifest_dir, cache_from="algo-1.0.0-seed:0.9.0")
        assert runtime.builds[0]["cache_from"] == "algo-1.0.0-seed:0.9.0"

    def test_invalid_manifest_is_not_built(self, manifest_dir, runtime):
        doc = manifest_document()
        del doc["job"]["maintainer"]
        with pytest.raises(ValidationFailed):
            BuildOrchestrator(runtime).build(Manifest.from_document(doc), manifest_dir)
        assert runtime.builds == []

    def test_warnings_as_errors_blocks_build(self, manifest_dir, runtime):
        manifest = Manifest.from_document(manifest_document(description=""))
        with pytest.raises(ValidationFailed):
            BuildOrchestrator(runtime).build(manifest, manifest_dir, warnings_as_errors=True)
        assert runtime.builds == []

    def test_missing_dockerfile(self, manifest, tmp_path, runtime):
        with pytest.raises(FileNotFoundError):
            BuildOrchestrator(runtime).build(manifest, tmp_path)


class TestManifestFromImage:
    """The embedded manifest label round-trips through an image."""

    def test_recover_manifest(self, manifest, manifest_dir, runtime):
        image = BuildOrchestrator(runtime).build(manifest, manifest_dir)
        recovered = load_manifest_from_image(runtime, image.name)
        assert recovered == manifest

    def test_image_without_label(self):
        runtime = FakeRuntime()
        runtime.labels["alpine:3.19"] = {}
        with pytest.raises(ManifestNotFound):
            load_manifest_from_image(runtime, "alpine:3.19")


def test_image_ref_parts():
    ref = ImageRef("algo-1.0.0-seed:1.0.2")
    assert ref.repository == "algo-1.0.0-seed"
    assert ref.tag == "1.0.2"
    assert str(ref) == "algo-1.0.0-seed:1.0.2"
