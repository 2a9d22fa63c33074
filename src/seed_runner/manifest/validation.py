"""
Manifest and metadata validation against versioned JSON schemas.

Schema documents are bundled as package data. The schema is selected from
the manifest's ``seedVersion`` unless an explicit schema file overrides it;
versions without a bundled schema are rejected rather than validated
against the closest match.

Validation produces a ValidationReport with two partitions:
    errors   - JSON Schema violations and structural contract problems
    warnings - conventions a publishable job should follow

Warnings-as-errors is applied afterwards by ``promote_warnings`` on the
same report, never by a second validation pass.
"""

import json
import re
import shlex
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from jsonschema import Draft7Validator, FormatChecker

from ..errors import ManifestParseError, SchemaNotSupported, ValidationFailed
from .model import SCHEMA_DIR, Manifest

SCHEMA_FILES = {
    '1.0.0': 'seed.manifest.schema-1.0.0.json',
}
METADATA_SCHEMA_FILE = 'seed.metadata.schema.json'

KNOWN_RESOURCES = ('cpus', 'mem', 'sharedMem', 'disk', 'gpus')


@dataclass(frozen=True)
class ValidationReport:
    """Result of validating one document against one schema."""
    schema: str
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    def promote_warnings(self) -> 'ValidationReport':
        """Return a report where every warning is also an error."""
        promoted = tuple(f"(warning) {w}" for w in self.warnings)
        return replace(self, errors=self.errors + promoted, warnings=())


def supported_schema_versions() -> List[str]:
    return sorted(SCHEMA_FILES)


def _read_json(path: Path, what: str) -> Dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"{what} not found: {path}")
    with open(path, 'r') as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ManifestParseError(f"Could not parse {what.lower()} {path}: {e}")


def load_schema(version: str) -> Dict[str, Any]:
    """
    Load the bundled manifest schema for a seed version.

    Raises:
        SchemaNotSupported: If no schema is bundled for that version
    """
    filename = SCHEMA_FILES.get(version)
    if filename is None:
        raise SchemaNotSupported(
            f"Seed schema version '{version}' is not supported. "
            f"Supported versions: {', '.join(supported_schema_versions())}"
        )
    return _read_json(SCHEMA_DIR / filename, "Schema")


def load_schema_file(path: Union[str, Path]) -> Dict[str, Any]:
    return _read_json(Path(path), "Schema")


def load_metadata_schema(override: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load the side-car metadata schema, or an explicit override."""
    if override:
        return load_schema_file(override)
    return _read_json(SCHEMA_DIR / METADATA_SCHEMA_FILE, "Metadata schema")


def _format_path(path) -> str:
    parts = []
    for p in path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(f".{p}" if parts else str(p))
    return "".join(parts) or "(root)"


def validate_document(document: Any, schema: Dict[str, Any]) -> List[str]:
    """
    Validate a document against a JSON schema.

    Returns:
        Error messages sorted by document path, so repeated validations of
        the same document produce identical output.
    """
    validator = Draft7Validator(schema, format_checker=FormatChecker())
    errors = sorted(
        validator.iter_errors(document),
        key=lambda e: (_format_path(e.absolute_path), e.message),
    )
    return [f"{_format_path(e.absolute_path)}: {e.message}" for e in errors]


def _semantic_errors(manifest: Manifest) -> List[str]:
    errors = []
    interface = manifest.interface

    seen = set()
    for name in interface.declared_names():
        if name in seen:
            errors.append(f"job.interface: name '{name}' is declared more than once")
        seen.add(name)

    for mount in interface.mounts:
        if mount.path and not mount.path.startswith('/'):
            errors.append(f"job.interface.mounts: path '{mount.path}' of mount '{mount.name}' must be absolute")

    if interface.command:
        try:
            shlex.split(interface.command)
        except ValueError as e:
            errors.append(f"job.interface.command: cannot be split into arguments ({e})")

    keys = [decl.lookup_key for decl in interface.output_json]
    for key in sorted({k for k in keys if keys.count(k) > 1}):
        errors.append(f"job.interface.outputs.json: key '{key}' is used by more than one output")

    return errors


def _referenced(command: str, name: str) -> bool:
    return re.search(r"\$\{?" + re.escape(name) + r"\b", command) is not None


def _semantic_warnings(manifest: Manifest) -> List[str]:
    warnings = []
    interface = manifest.interface

    if not manifest.description:
        warnings.append("job.description: no description provided")
    if not manifest.maintainer_email:
        warnings.append("job.maintainer.email: no maintainer email provided")

    for decl in interface.input_files:
        if not decl.media_types:
            warnings.append(f"job.interface.inputs.files: input '{decl.name}' declares no mediaTypes")

    referenced_names = [d.name for d in interface.input_files] + [d.name for d in interface.input_json]
    for name in referenced_names:
        if interface.command and not _referenced(interface.command, name):
            warnings.append(f"job.interface.command: input '{name}' is not referenced by the command")

    for res in interface.resources:
        if res.name not in KNOWN_RESOURCES:
            warnings.append(f"job.resources.scalar: unrecognized resource '{res.name}'")

    return warnings


def validate_manifest(manifest: Manifest, schema_override: Optional[Union[str, Path]] = None) -> ValidationReport:
    """
    Validate a manifest against the schema for its declared seed version.

    Args:
        manifest: Parsed manifest
        schema_override: Schema file to use instead of the bundled one

    Returns:
        ValidationReport partitioned into errors and warnings
    """
    if schema_override:
        schema = load_schema_file(schema_override)
        schema_label = str(schema_override)
    else:
        schema = load_schema(manifest.schema_version)
        schema_label = manifest.schema_version

    errors = validate_document(manifest.to_document(), schema)
    errors.extend(_semantic_errors(manifest))
    return ValidationReport(
        schema=schema_label,
        errors=tuple(errors),
        warnings=tuple(_semantic_warnings(manifest)),
    )


def check_report(report: ValidationReport, warnings_as_errors: bool = False) -> ValidationReport:
    """
    Raise ValidationFailed when the report (after optional promotion) has errors.

    Returns:
        The effective report
    """
    if warnings_as_errors:
        report = report.promote_warnings()
    if not report.ok:
        raise ValidationFailed(
            f"Seed manifest failed validation against schema {report.schema}",
            report=report,
            details=list(report.errors),
        )
    return report
