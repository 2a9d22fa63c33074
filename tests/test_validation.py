"""Tests for schema selection, validation reports and warnings-as-errors."""

import json

import pytest

from conftest import manifest_document
from seed_runner.errors import SchemaNotSupported, ValidationFailed
from seed_runner.manifest.model import Manifest
from seed_runner.manifest.validation import (
    check_report,
    load_metadata_schema,
    supported_schema_versions,
    validate_document,
    validate_manifest,
)


def _manifest(**job_overrides):
    return Manifest.from_document(manifest_document(**job_overrides))


class TestValidateManifest:
    """Tests for validate_manifest."""

    def test_valid_manifest_is_clean(self, manifest):
        report = validate_manifest(manifest)
        assert report.ok
        assert report.errors == ()
        assert report.warnings == ()
        assert report.schema == "1.0.0"

    def test_deterministic(self):
        doc = manifest_document(timeout="soon", title=5)
        first = validate_manifest(Manifest.from_document(doc))
        second = validate_manifest(Manifest.from_document(doc))
        assert first == second
        assert len(first.errors) == 2

    def test_missing_required_field(self):
        doc = manifest_document()
        del doc["job"]["title"]
        report = validate_manifest(Manifest.from_document(doc))
        assert not report.ok
        assert any("'title' is a required property" in e for e in report.errors)

    def test_unsupported_schema_version(self):
        doc = manifest_document()
        doc["seedVersion"] = "9.9.9"
        with pytest.raises(SchemaNotSupported):
            validate_manifest(Manifest.from_document(doc))

    def test_schema_override(self, tmp_path):
        doc = manifest_document()
        doc["seedVersion"] = "9.9.9"
        schema = tmp_path / "permissive.json"
        schema.write_text(json.dumps({"type": "object"}))

        report = validate_manifest(Manifest.from_document(doc), schema_override=schema)
        assert report.ok
        assert report.schema == str(schema)

    def test_duplicate_names_are_errors(self):
        doc = manifest_document()
        doc["job"]["interface"]["outputs"]["files"].append({"name": "image", "pattern": "*.tif"})
        report = validate_manifest(Manifest.from_document(doc))
        assert any("declared more than once" in e for e in report.errors)

    def test_relative_mount_is_error(self):
        doc = manifest_document()
        doc["job"]["interface"]["mounts"] = [{"name": "REF", "path": "data/ref"}]
        report = validate_manifest(Manifest.from_document(doc))
        assert any("must be absolute" in e for e in report.errors)

    def test_unbalanced_command_is_error(self):
        doc = manifest_document()
        doc["job"]["interface"]["command"] = "run.sh '${image}"
        report = validate_manifest(Manifest.from_document(doc))
        assert any("cannot be split" in e for e in report.errors)


class TestWarnings:
    """Warnings never fail validation unless promoted."""

    def test_missing_description_warns(self):
        report = validate_manifest(_manifest(description=""))
        assert report.ok
        assert any("description" in w for w in report.warnings)

    def test_unreferenced_input_warns(self):
        doc = manifest_document()
        doc["job"]["interface"]["command"] = "run.sh"
        report = validate_manifest(Manifest.from_document(doc))
        assert any("not referenced" in w for w in report.warnings)

    def test_warnings_pass_by_default(self):
        report = validate_manifest(_manifest(description=""))
        assert check_report(report) is report

    def test_warnings_as_errors(self):
        report = validate_manifest(_manifest(description=""))
        with pytest.raises(ValidationFailed) as exc_info:
            check_report(report, warnings_as_errors=True)
        assert exc_info.value.details
        assert all(d.startswith("(warning) ") for d in exc_info.value.details)

    def test_promotion_is_post_processing(self):
        report = validate_manifest(_manifest(description=""))
        promoted = report.promote_warnings()
        assert promoted.warnings == ()
        assert len(promoted.errors) == len(report.errors) + len(report.warnings)


def test_supported_schema_versions():
    assert supported_schema_versions() == ["1.0.0"]


def test_metadata_schema_accepts_feature():
    schema = load_metadata_schema()
    feature = {"type": "Feature", "geometry": None, "properties": {"sourceSensor": "EO"}}
    assert validate_document(feature, schema) == []
    assert validate_document({"type": "Point"}, schema)
